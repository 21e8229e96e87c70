"""
Composite job persistence.

Each status change is validated against its state machine and written as one
single-record update before the caller moves on.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.config import settings
from shared.database import DatabaseClient
from shared.errors import JobNotFoundError, PersistenceError
from shared.logging import get_logger
from shared.models.composite import (
    ActorReference,
    Clip,
    ClipStatus,
    CompositeStatus,
    CompositeVideo,
    utcnow,
    validate_clip_transition,
    validate_composite_transition,
)

logger = get_logger(__name__)

COMPOSITES_TABLE = "composite_videos"
CLIPS_TABLE = "composite_clips"


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    row = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        row[key] = value
    return row


class CompositeStore(ABC):
    """
    Base store. Subclasses implement the raw record operations; the
    transition helpers here are the only way statuses change.
    """

    @abstractmethod
    async def create(self, composite: CompositeVideo) -> CompositeVideo:
        """Insert a job with its pre-created clips."""

    @abstractmethod
    async def get(self, composite_id: str) -> CompositeVideo:
        """
        Raises:
            JobNotFoundError: If no job has this id
        """

    @abstractmethod
    async def update_composite(self, composite_id: str, fields: Dict[str, Any]) -> None:
        """Write job fields in one update."""

    @abstractmethod
    async def update_clip(self, clip_id: str, fields: Dict[str, Any]) -> None:
        """Write clip fields in one update."""

    @abstractmethod
    async def list_recent(self, limit: int = 20, status: Optional[CompositeStatus] = None) -> List[CompositeVideo]:
        """Newest jobs first, optionally filtered by status."""

    async def health_check(self) -> bool:
        return True

    async def transition_clip(self, clip: Clip, target: ClipStatus, **changes: Any) -> Clip:
        """
        Move a clip to `target`, persisting the new artifacts with it.

        Raises:
            InvalidStateTransition: If the state machine forbids the move
            PersistenceError: If the write fails
        """
        validate_clip_transition(clip, target, changes)
        fields = {**changes, "status": target, "updated_at": utcnow()}
        await self.update_clip(clip.id, fields)
        logger.info(
            "Clip status changed",
            extra={"clip_id": clip.id, "clip_index": clip.index, "from_status": clip.status.value, "to_status": target.value}
        )
        return clip.model_copy(update=fields)

    async def transition_composite(
        self,
        composite: CompositeVideo,
        target: CompositeStatus,
        **changes: Any
    ) -> CompositeVideo:
        """Move a composite job to `target` (see transition_clip)."""
        validate_composite_transition(composite, target, changes)
        fields = {**changes, "status": target}
        if target == CompositeStatus.COMPLETED and "completed_at" not in fields:
            fields["completed_at"] = utcnow()
        await self.update_composite(composite.id, fields)
        logger.info(
            "Composite status changed",
            extra={"composite_id": composite.id, "from_status": composite.status.value, "to_status": target.value}
        )
        return composite.model_copy(update=fields)

    async def record_progress(self, composite: CompositeVideo, clips_completed: int) -> CompositeVideo:
        """
        Persist the clips-completed counter.

        The counter never decreases and never exceeds the clip count.
        """
        value = min(max(clips_completed, composite.current_clip_index), composite.total_clips)
        if value == composite.current_clip_index:
            return composite
        await self.update_composite(composite.id, {"current_clip_index": value})
        return composite.model_copy(update={"current_clip_index": value})


class InMemoryCompositeStore(CompositeStore):
    """Process-local store for local runs (persistence_backend=memory) and tests."""

    def __init__(self):
        self._composites: Dict[str, CompositeVideo] = {}
        self._clips: Dict[str, Clip] = {}
        self.writes: List[Dict[str, Any]] = []

    async def create(self, composite: CompositeVideo) -> CompositeVideo:
        self._composites[composite.id] = composite.model_copy(update={"clips": []}, deep=True)
        for clip in composite.clips:
            self._clips[clip.id] = clip.model_copy(deep=True)
        return await self.get(composite.id)

    async def get(self, composite_id: str) -> CompositeVideo:
        composite = self._composites.get(composite_id)
        if composite is None:
            raise JobNotFoundError(f"Composite job {composite_id} not found", job_id=composite_id, code="NOT_FOUND")
        clips = sorted(
            (c.model_copy(deep=True) for c in self._clips.values() if c.composite_id == composite_id),
            key=lambda c: c.index,
        )
        return composite.model_copy(update={"clips": clips}, deep=True)

    async def update_composite(self, composite_id: str, fields: Dict[str, Any]) -> None:
        if composite_id not in self._composites:
            raise PersistenceError(f"Composite job {composite_id} does not exist", job_id=composite_id)
        self._composites[composite_id] = self._composites[composite_id].model_copy(update=fields)
        self.writes.append({"composite_id": composite_id, **fields})

    async def update_clip(self, clip_id: str, fields: Dict[str, Any]) -> None:
        if clip_id not in self._clips:
            raise PersistenceError(f"Clip {clip_id} does not exist")
        self._clips[clip_id] = self._clips[clip_id].model_copy(update=fields)
        self.writes.append({"clip_id": clip_id, **fields})

    async def list_recent(self, limit: int = 20, status: Optional[CompositeStatus] = None) -> List[CompositeVideo]:
        composites = [c for c in self._composites.values() if status is None or c.status == status]
        composites.sort(key=lambda c: c.created_at, reverse=True)
        return [await self.get(c.id) for c in composites[:limit]]


class SupabaseCompositeStore(CompositeStore):
    """Store backed by the composite_videos / composite_clips tables."""

    def __init__(self, db_client: Optional[DatabaseClient] = None):
        if db_client is None:
            from shared.database import db
            db_client = db
        self.db = db_client

    @staticmethod
    def _composite_row(composite: CompositeVideo) -> Dict[str, Any]:
        row = composite.model_dump(mode="json", exclude={"clips"})
        return row

    @staticmethod
    def _clip_row(clip: Clip) -> Dict[str, Any]:
        row = clip.model_dump(mode="json", exclude={"index"})
        row["clip_index"] = clip.index
        return row

    @staticmethod
    def _row_to_clip(row: Dict[str, Any]) -> Clip:
        data = dict(row)
        data["index"] = data.pop("clip_index")
        return Clip.model_validate(data)

    @staticmethod
    def _row_to_composite(row: Dict[str, Any], clips: List[Clip]) -> CompositeVideo:
        data = dict(row)
        actor = data.get("actor")
        if isinstance(actor, dict):
            data["actor"] = ActorReference.model_validate(actor)
        data["clips"] = clips
        return CompositeVideo.model_validate(data)

    async def create(self, composite: CompositeVideo) -> CompositeVideo:
        await self.db.table(COMPOSITES_TABLE).insert(self._composite_row(composite)).execute()
        if composite.clips:
            await self.db.table(CLIPS_TABLE).insert([self._clip_row(c) for c in composite.clips]).execute()
        logger.info("Composite job created", extra={"composite_id": composite.id, "total_clips": composite.total_clips})
        return composite

    async def _get_clips(self, composite_id: str) -> List[Clip]:
        result = await self.db.table(CLIPS_TABLE).select("*").eq("composite_id", composite_id).order("clip_index").execute()
        clips = [self._row_to_clip(row) for row in (result.data or [])]
        clips.sort(key=lambda c: c.index)
        return clips

    async def get(self, composite_id: str) -> CompositeVideo:
        result = await self.db.table(COMPOSITES_TABLE).select("*").eq("id", composite_id).execute()
        if not result.data:
            raise JobNotFoundError(f"Composite job {composite_id} not found", job_id=composite_id, code="NOT_FOUND")
        return self._row_to_composite(result.data[0], await self._get_clips(composite_id))

    async def update_composite(self, composite_id: str, fields: Dict[str, Any]) -> None:
        await self.db.table(COMPOSITES_TABLE).update(_serialize(fields)).eq("id", composite_id).execute()

    async def update_clip(self, clip_id: str, fields: Dict[str, Any]) -> None:
        await self.db.table(CLIPS_TABLE).update(_serialize(fields)).eq("id", clip_id).execute()

    async def list_recent(self, limit: int = 20, status: Optional[CompositeStatus] = None) -> List[CompositeVideo]:
        query = self.db.table(COMPOSITES_TABLE).select("*")
        if status is not None:
            query = query.eq("status", status.value)
        result = await query.order("created_at", desc=True).limit(limit).execute()
        return [
            self._row_to_composite(row, await self._get_clips(row["id"]))
            for row in (result.data or [])
        ]

    async def health_check(self) -> bool:
        return await self.db.health_check()


def create_composite_store() -> CompositeStore:
    """Store selected by settings.persistence_backend."""
    if settings.persistence_backend == "memory":
        return InMemoryCompositeStore()
    return SupabaseCompositeStore()
