"""
External media tool (ffmpeg / ffprobe) subprocess glue.

Shared by the frame extractor and the video stitcher. Every invocation is a
non-blocking asyncio subprocess with a timeout; a non-zero exit becomes
MediaToolFailed carrying the tail of stderr.
"""

import asyncio
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from shared.config import settings
from shared.errors import MediaToolFailed, MediaToolUnavailable
from shared.logging import get_logger

logger = get_logger(__name__)

STDERR_TAIL = 500


def truncate_output(text: str, limit: int = STDERR_TAIL) -> str:
    """Keep the last `limit` characters of tool output (errors are at the end)."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


@contextmanager
def scratch_directory(prefix: str) -> Iterator[Path]:
    """
    Unique, process-local scratch directory removed on every exit path.

    Args:
        prefix: Directory name prefix, e.g. "frame-"
    """
    directory = tempfile.mkdtemp(prefix=prefix, dir=settings.scratch_dir)
    try:
        yield Path(directory)
    finally:
        shutil.rmtree(directory, ignore_errors=True)


@dataclass
class ToolResult:
    exit_code: int
    stdout: str
    stderr: str


class MediaTool:
    """Run ffmpeg and ffprobe."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.timeout = timeout or settings.media_tool_timeout_seconds
        self._available: Optional[bool] = None

    async def _exec(self, binary: str, args: Sequence[str], timeout: Optional[float] = None) -> ToolResult:
        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise MediaToolUnavailable(f"{binary} is not available: {str(e)}", code="MEDIA_TOOL_UNAVAILABLE") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout or self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise MediaToolFailed(
                f"{Path(binary).name} timed out after {timeout or self.timeout}s",
                code="MEDIA_TOOL_TIMEOUT"
            ) from e

        return ToolResult(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _run(self, binary: str, args: List[str], operation: str) -> ToolResult:
        logger.debug("Running media tool", extra={"tool": binary, "operation": operation, "args": args})
        result = await self._exec(binary, args)
        if result.exit_code != 0:
            stderr = truncate_output(result.stderr)
            logger.error(
                "Media tool failed",
                extra={"operation": operation, "exit_code": result.exit_code, "stderr": stderr}
            )
            raise MediaToolFailed(
                f"{operation} failed with exit code {result.exit_code}: {stderr}",
                exit_code=result.exit_code,
                stderr=stderr,
            )
        return result

    async def is_available(self) -> bool:
        """Check that ffmpeg runs (`ffmpeg -version`). A positive answer is cached."""
        if self._available:
            return True
        try:
            result = await self._exec(self.ffmpeg_path, ["-version"], timeout=10)
        except (MediaToolUnavailable, MediaToolFailed) as e:
            logger.warning("Media tool not available", extra={"ffmpeg_path": self.ffmpeg_path, "error": str(e)})
            return False
        self._available = result.exit_code == 0
        return self._available

    async def ensure_available(self) -> None:
        """
        Raises:
            MediaToolUnavailable: If ffmpeg cannot be run
        """
        if not await self.is_available():
            raise MediaToolUnavailable(
                f"Media tool '{self.ffmpeg_path}' is not installed or not executable",
                code="MEDIA_TOOL_UNAVAILABLE"
            )

    async def probe_duration(self, path: Path) -> float:
        """
        Read a media file's container duration in seconds.

        Raises:
            MediaToolFailed: If ffprobe fails or prints no duration
        """
        result = await self._run(
            self.ffprobe_path,
            [
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            operation="probe",
        )
        try:
            duration = float(result.stdout.strip())
        except ValueError as e:
            raise MediaToolFailed(
                f"ffprobe returned no duration for {Path(path).name}: {result.stdout.strip()!r}",
                exit_code=result.exit_code,
            ) from e
        if duration <= 0:
            raise MediaToolFailed(f"ffprobe reported non-positive duration {duration}", exit_code=result.exit_code)
        return duration

    async def extract_frame(self, input_path: Path, seek_seconds: float, output_path: Path) -> Path:
        """Decode exactly one frame at `seek_seconds` into a still image."""
        await self._run(
            self.ffmpeg_path,
            [
                "-y",
                "-ss", f"{seek_seconds:.3f}",
                "-i", str(input_path),
                "-frames:v", "1",
                "-q:v", "2",
                str(output_path),
            ],
            operation="frame extraction",
        )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise MediaToolFailed("Frame extraction produced no image")
        return output_path

    async def concat(
        self,
        list_path: Path,
        width: int,
        height: int,
        fps: int,
        output_path: Path
    ) -> Path:
        """
        Concatenate the files listed in a concat-demuxer manifest, re-encoding
        to one resolution, frame rate, pixel format and audio sample rate.
        """
        video_filter = (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:black,"
            f"fps={fps}"
        )
        await self._run(
            self.ffmpeg_path,
            [
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_path),
                "-vf", video_filter,
                "-c:v", "libx264",
                "-preset", "medium",
                "-profile:v", "high",
                "-pix_fmt", "yuv420p",
                "-crf", "20",
                "-c:a", "aac",
                "-b:a", "192k",
                "-ar", "44100",
                "-movflags", "+faststart",
                str(output_path),
            ],
            operation="concatenation",
        )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise MediaToolFailed("Concatenation produced no output file")
        return output_path
