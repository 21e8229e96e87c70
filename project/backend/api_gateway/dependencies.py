"""
FastAPI dependencies.

Shared store, Redis client and caller identity for route handlers.
"""

from typing import Optional

from fastapi import Header, Request

from shared.composite_store import CompositeStore, create_composite_store
from shared.logging import get_logger
from shared.media_tool import MediaTool
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

_store: Optional[CompositeStore] = None
_media_tool: Optional[MediaTool] = None


def get_store() -> CompositeStore:
    """Process-wide composite store (shared with an in-process worker)."""
    global _store
    if _store is None:
        _store = create_composite_store()
    return _store


def get_redis() -> RedisClient:
    return redis_client


def get_media_tool() -> MediaTool:
    global _media_tool
    if _media_tool is None:
        _media_tool = MediaTool()
    return _media_tool


async def get_caller_id(
    request: Request,
    x_caller_id: Optional[str] = Header(None)
) -> str:
    """
    Identity used for submission rate limiting.

    The X-Caller-ID header when present, else the client address.
    """
    if x_caller_id and x_caller_id.strip():
        return x_caller_id.strip()
    if request.client is not None:
        return request.client.host
    return "anonymous"
