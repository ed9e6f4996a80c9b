"""Format handling for transferred media: MIME types, image conversion, video probing."""

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..errors import MediaTransferError

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/aac",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Audio formats accepted by the music collection
MUSIC_MIME_TYPES = {"audio/mpeg", "audio/mp3", "audio/aac", "audio/ogg"}


def get_mime_type(filename: str) -> str:
    """MIME type from a file extension."""
    return MIME_TYPES.get(Path(filename).suffix.lower(), DEFAULT_MIME_TYPE)


def is_image(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


def is_video(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("video/")


def is_audio(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("audio/")


def is_supported_music_file(filename: str, mime_type: Optional[str] = None) -> bool:
    """Whether the music collection accepts this audio file (.m4a never is)."""
    if Path(filename).suffix.lower() == ".m4a":
        return False
    return (mime_type or get_mime_type(filename)) in MUSIC_MIME_TYPES


class MediaProcessor:
    """
    Converts and inspects downloaded media before upload.

    Images are normalized to WebP. Videos are probed with ffprobe and get a
    square thumbnail from ffmpeg. Every failure is raised as
    MediaTransferError so callers can skip the asset and carry on.
    """

    def __init__(
        self,
        webp_quality: int = 90,
        thumbnail_size: int = 160,
        max_image_bytes: int = 10 * 1024 * 1024,
        max_video_bytes: int = 100 * 1024 * 1024,
        max_video_seconds: float = 30.0,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None
    ):
        """
        Initialize the processor.

        Args:
            webp_quality: WebP encoder quality (0-100)
            thumbnail_size: Edge length of square video thumbnails
            max_image_bytes: Largest accepted image
            max_video_bytes: Largest accepted video
            max_video_seconds: Longest accepted video
            ffmpeg_path: ffmpeg executable (looked up on PATH if omitted)
            ffprobe_path: ffprobe executable (looked up on PATH if omitted)
        """
        self.webp_quality = webp_quality
        self.thumbnail_size = thumbnail_size
        self.max_image_bytes = max_image_bytes
        self.max_video_bytes = max_video_bytes
        self.max_video_seconds = max_video_seconds
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg")
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe")

    def check_size(self, path: str, mime_type: str) -> None:
        """
        Enforce size limits.

        Raises:
            MediaTransferError: If the file is over the limit for its type
        """
        size = os.path.getsize(path)
        if is_image(mime_type) and size > self.max_image_bytes:
            raise MediaTransferError(
                f"{Path(path).name} is {size / 1024 / 1024:.1f}MB, images are limited to "
                f"{self.max_image_bytes / 1024 / 1024:.0f}MB"
            )
        if is_video(mime_type) and size > self.max_video_bytes:
            raise MediaTransferError(
                f"{Path(path).name} is {size / 1024 / 1024:.1f}MB, videos are limited to "
                f"{self.max_video_bytes / 1024 / 1024:.0f}MB"
            )

    def to_webp(self, path: str) -> str:
        """
        Convert an image to WebP next to the original.

        Returns:
            Path of the WebP file (the input path if it already is WebP)
        """
        source = Path(path)
        if source.suffix.lower() == ".webp":
            return str(source)

        target = source.with_suffix(".webp")
        if target.exists():
            return str(target)

        try:
            with Image.open(source) as image:
                if image.mode not in ("RGB", "RGBA"):
                    image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
                image.save(target, format="WEBP", quality=self.webp_quality)
        except (UnidentifiedImageError, OSError) as e:
            raise MediaTransferError(f"Could not convert {source.name} to WebP: {e}") from e

        logger.debug(f"Converted {source.name} -> {target.name}")
        return str(target)

    def read_duration(self, path: str) -> float:
        """Duration of an audio or video file in seconds, via ffprobe."""
        if not self.ffprobe_path:
            raise MediaTransferError("ffprobe is not installed")

        try:
            completed = subprocess.run(
                [
                    self.ffprobe_path,
                    "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "json",
                    path,
                ],
                capture_output=True,
                text=True,
                timeout=60,
                check=True,
            )
            return float(json.loads(completed.stdout)["format"]["duration"])
        except (subprocess.SubprocessError, OSError, KeyError, ValueError) as e:
            raise MediaTransferError(f"Could not read duration of {Path(path).name}: {e}") from e

    def check_video(self, path: str) -> float:
        """
        Enforce video size and duration limits.

        Returns:
            The video duration in seconds
        """
        self.check_size(path, get_mime_type(path))
        duration = self.read_duration(path)
        if duration > self.max_video_seconds:
            raise MediaTransferError(
                f"{Path(path).name} is {duration:.1f}s long, videos are limited to "
                f"{self.max_video_seconds:.0f}s"
            )
        return duration

    def video_thumbnail(self, path: str) -> str:
        """
        Grab the first frame of a video as a square WebP thumbnail.

        Returns:
            Path of the thumbnail file
        """
        if not self.ffmpeg_path:
            raise MediaTransferError("ffmpeg is not installed")

        source = Path(path)
        frame_path = source.with_name(f"{source.stem}-frame.png")
        thumb_path = source.with_name(f"{source.stem}-thumbnail.webp")
        if thumb_path.exists():
            return str(thumb_path)

        try:
            subprocess.run(
                [
                    self.ffmpeg_path,
                    "-y",
                    "-loglevel", "error",
                    "-i", str(source),
                    "-frames:v", "1",
                    str(frame_path),
                ],
                capture_output=True,
                timeout=120,
                check=True,
            )
            with Image.open(frame_path) as frame:
                frame = frame.convert("RGB")
                size = self.thumbnail_size
                thumbnail = _cover(frame, size)
                thumbnail.save(thumb_path, format="WEBP", quality=self.webp_quality)
        except (subprocess.SubprocessError, UnidentifiedImageError, OSError) as e:
            raise MediaTransferError(f"Could not create thumbnail for {source.name}: {e}") from e
        finally:
            if frame_path.exists():
                frame_path.unlink()

        return str(thumb_path)


def _cover(image: Image.Image, size: int) -> Image.Image:
    """Scale and center-crop an image to a size x size square."""
    width, height = image.size
    scale = size / min(width, height)
    resized = image.resize((max(size, round(width * scale)), max(size, round(height * scale))))
    left = (resized.width - size) // 2
    top = (resized.height - size) // 2
    return resized.crop((left, top, left + size, top + size))
