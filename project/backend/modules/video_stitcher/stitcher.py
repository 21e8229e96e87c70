"""
Video stitching.

Join completed clips, in order, into one video with the concat demuxer,
re-encoding to a single resolution, frame rate and audio format.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from shared.errors import (
    ArtifactDownloadError,
    ArtifactUploadError,
    CompositionError,
    MediaToolError,
    ValidationError,
)
from shared.logging import get_logger
from shared.media_tool import MediaTool, scratch_directory
from shared.models.composite import AspectRatio
from shared.storage import StorageClient, create_storage_client

logger = get_logger("video_stitcher")

OUTPUT_FPS = 30

# Used for clips whose length was never recorded
DEFAULT_CLIP_DURATION = 8.0


@dataclass
class StitchResult:
    video_url: str
    duration_seconds: Optional[float]
    degraded: bool = False


def escape_concat_path(path: str) -> str:
    """Quote a path for a concat manifest `file '...'` line."""
    return path.replace("'", "'\\''")


def build_concat_manifest(paths: Sequence[Path]) -> str:
    return "\n".join(f"file '{escape_concat_path(str(p))}'" for p in paths) + "\n"


def total_duration(clip_durations: Optional[Sequence[Optional[float]]], clip_count: int) -> float:
    """Sum of clip lengths, counting unknown lengths as DEFAULT_CLIP_DURATION."""
    durations = list(clip_durations or [])
    durations += [None] * (clip_count - len(durations))
    return sum(d if d else DEFAULT_CLIP_DURATION for d in durations[:clip_count])


class VideoStitcher:
    """
    Stitch clips with the media tool.

    Args:
        storage: Artifact store for clip downloads and the final upload
        media_tool: ffmpeg/ffprobe runner
    """

    def __init__(self, storage: Optional[StorageClient] = None, media_tool: Optional[MediaTool] = None):
        self.storage = storage or create_storage_client()
        self.media_tool = media_tool or MediaTool()

    async def stitch(
        self,
        video_urls: Sequence[str],
        clip_durations: Optional[Sequence[Optional[float]]] = None,
        aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    ) -> StitchResult:
        """
        Concatenate clips into one video.

        Args:
            video_urls: Clip URLs in playback order
            clip_durations: Clip lengths in seconds, same order (optional)
            aspect_ratio: Output frame

        Returns:
            StitchResult; `degraded` is set when the media tool is missing and
            the first clip is returned instead of the full video

        Raises:
            ValidationError: No clips given
            CompositionError: Download, encoding or upload failed
        """
        if not video_urls:
            raise ValidationError("No video URLs provided")

        if len(video_urls) == 1:
            duration = clip_durations[0] if clip_durations else None
            return StitchResult(video_url=video_urls[0], duration_seconds=duration)

        if not await self.media_tool.is_available():
            logger.warning(
                "Media tool not available, returning first clip instead of stitched video",
                extra={"clip_count": len(video_urls)}
            )
            duration = clip_durations[0] if clip_durations else None
            return StitchResult(video_url=video_urls[0], duration_seconds=duration, degraded=True)

        width, height = aspect_ratio.dimensions
        logger.info(
            "Stitching clips",
            extra={"clip_count": len(video_urls), "aspect_ratio": aspect_ratio.value, "width": width, "height": height}
        )

        try:
            with scratch_directory("stitch-") as workdir:
                paths: List[Path] = []
                for index, url in enumerate(video_urls):
                    paths.append(await self.storage.download_to(url, workdir / f"clip-{index}.mp4"))

                manifest = workdir / "concat.txt"
                manifest.write_text(build_concat_manifest(paths), encoding="utf-8")

                output = await self.media_tool.concat(manifest, width, height, OUTPUT_FPS, workdir / "output.mp4")

                try:
                    duration = await self.media_tool.probe_duration(output)
                except MediaToolError as e:
                    duration = total_duration(clip_durations, len(video_urls))
                    logger.warning(
                        "Could not probe stitched video, using summed clip durations",
                        extra={"error": str(e), "duration": duration}
                    )

                video_url = await self.storage.upload_file(output, "video/mp4")
        except (ArtifactDownloadError, ArtifactUploadError, MediaToolError) as e:
            logger.error("Video stitching failed", exc_info=e, extra={"clip_count": len(video_urls)})
            raise CompositionError(f"Video stitching failed: {e.message}", code=e.code) from e

        logger.info(
            "Video stitching completed",
            extra={"clip_count": len(video_urls), "duration": round(duration, 2)}
        )
        return StitchResult(video_url=video_url, duration_seconds=duration)
