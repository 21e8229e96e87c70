"""
Frame extraction.

Pull one still frame out of a generated clip and store it, so the next clip
can start from the pose the previous one ended on.
"""

from enum import Enum
from typing import Literal, Optional, Union

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.media_tool import MediaTool, scratch_directory
from shared.storage import StorageClient, create_storage_client

logger = get_logger("frame_extractor")

# Offset from either end of the clip; the very first and very last
# timestamps sometimes decode to nothing
EDGE_OFFSET = 0.1

_MIME_TYPES = {"png": "image/png", "jpg": "image/jpeg"}


class FramePosition(str, Enum):
    FIRST = "first"
    LAST = "last"


Position = Union[FramePosition, float]


def seek_time(position: Position, duration: float) -> float:
    """
    Seek offset in seconds for a frame position in a clip of `duration`.

    Last -> duration - 0.1, first -> 0.1, explicit offsets clamped into
    [0, duration - 0.1]. Never negative.
    """
    latest = max(0.0, duration - EDGE_OFFSET)
    if position == FramePosition.LAST:
        return latest
    if position == FramePosition.FIRST:
        return min(EDGE_OFFSET, duration)
    return min(max(0.0, float(position)), latest)


class FrameExtractor:
    """
    Extract frames with the media tool and upload them to the artifact store.

    Args:
        storage: Artifact store for downloads and uploads
        media_tool: ffmpeg/ffprobe runner
        image_format: "png" or "jpg"
    """

    def __init__(
        self,
        storage: Optional[StorageClient] = None,
        media_tool: Optional[MediaTool] = None,
        image_format: Literal["png", "jpg"] = "png"
    ):
        if image_format not in _MIME_TYPES:
            raise ValidationError(f"Unsupported frame format '{image_format}'")
        self.storage = storage or create_storage_client()
        self.media_tool = media_tool or MediaTool()
        self.image_format = image_format

    async def extract_frame(self, video_url: str, position: Position = FramePosition.LAST) -> str:
        """
        Extract one frame and return its stored URL.

        Args:
            video_url: Clip to read
            position: FramePosition.FIRST, FramePosition.LAST or an offset in seconds

        Returns:
            URL of the uploaded still image

        Raises:
            MediaToolUnavailable: ffmpeg is not installed
            ArtifactDownloadError: The clip could not be fetched
            MediaToolFailed: Probing or decoding failed
            ArtifactUploadError: The image could not be stored
        """
        await self.media_tool.ensure_available()

        with scratch_directory("frame-") as workdir:
            video_path = await self.storage.download_to(video_url, workdir / "input.mp4")
            duration = await self.media_tool.probe_duration(video_path)
            seek = seek_time(position, duration)

            frame_path = workdir / f"frame.{self.image_format}"
            await self.media_tool.extract_frame(video_path, seek, frame_path)
            frame_url = await self.storage.upload_file(frame_path, _MIME_TYPES[self.image_format])

        logger.info(
            "Frame extracted",
            extra={"position": str(getattr(position, "value", position)), "seek": round(seek, 3), "duration": duration}
        )
        return frame_url

    async def extract_last_frame(self, video_url: str) -> str:
        """Extract the closing frame of a clip."""
        return await self.extract_frame(video_url, FramePosition.LAST)
