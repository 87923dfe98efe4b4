"""
Compression Service - Single Responsibility: shrink media before transfer.

Images are re-encoded with Pillow, videos with ffmpeg. The result is always of
the same media kind and never larger than the input; anything that goes wrong
raises CompressionFailure so the caller can fall back to the original.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import asyncio
import logging
import os
import shutil
import subprocess
import tempfile

from PIL import Image

from ..config import MB, QueueConfig
from ..errors import CompressionFailure
from ..models import Payload, SourceFile, format_file_size
logger = logging.getLogger(__name__)

# Animated and vector formats lose information when re-encoded.
SKIPPED_IMAGE_TYPES = {"image/gif", "image/svg+xml"}


@dataclass(frozen=True)
class CompressionSettings:
    """Encoder settings picked from the input size tier."""
    quality: int
    max_width: int
    max_height: int


def get_compression_settings(size: int, kind: str) -> CompressionSettings:
    """Bigger inputs get more aggressive settings."""
    if kind == "image":
        if size > 10 * MB:
            return CompressionSettings(quality=60, max_width=1920, max_height=1080)
        if size > 5 * MB:
            return CompressionSettings(quality=70, max_width=2560, max_height=1440)
        return CompressionSettings(quality=80, max_width=3840, max_height=2160)
    if size > 50 * MB:
        return CompressionSettings(quality=60, max_width=1280, max_height=720)
    if size > 20 * MB:
        return CompressionSettings(quality=70, max_width=1920, max_height=1080)
    return CompressionSettings(quality=80, max_width=1920, max_height=1080)


def _crf_for_quality(quality: int) -> int:
    # quality 80 -> crf 23, quality 60 -> crf 28
    return max(18, min(35, round(43 - quality / 4)))


class CompressionService:
    """
    Compression Preprocessor.

    Implements ICompressor. Pass-through when compression is disabled, the
    input is under its kind's threshold, or the kind is not compressible.
    """

    def __init__(self, config: Optional[QueueConfig] = None):
        self._config = config or QueueConfig()

    def needs_compression(self, source: SourceFile) -> bool:
        if not self._config.compression_enabled:
            return False
        if source.media_type.startswith("image/"):
            if source.media_type in SKIPPED_IMAGE_TYPES:
                return False
            return source.size > self._config.image_compression_threshold
        if source.media_type.startswith("video/"):
            return source.size > self._config.video_compression_threshold
        return False

    async def compress(self, source: SourceFile) -> Payload:
        """
        Return a payload no larger than the source.

        Raises:
            CompressionFailure: encoder missing, input unreadable, or encoding failed
        """
        if not self.needs_compression(source):
            return Payload.from_source(source)

        settings = get_compression_settings(source.size, source.kind)
        logger.info(
            f"Compressing {source.filename} ({format_file_size(source.size)}, "
            f"quality={settings.quality}, max={settings.max_width}x{settings.max_height})"
        )

        if source.kind == "image":
            output = await asyncio.to_thread(self._compress_image, source, settings)
            media_type = "image/webp"
        else:
            output = await self._compress_video(source, settings)
            media_type = "video/mp4"

        compressed_size = output.stat().st_size
        if compressed_size >= source.size:
            logger.info(f"Compression did not shrink {source.filename}; using original")
            output.unlink(missing_ok=True)
            return Payload.from_source(source)

        reduction_pct = (source.size - compressed_size) / source.size * 100
        logger.info(
            f"Compressed {source.filename}: {format_file_size(source.size)} -> "
            f"{format_file_size(compressed_size)} ({reduction_pct:.1f}% reduction)"
        )
        return Payload(path=output, media_type=media_type, size=compressed_size, temporary=True)

    def _temp_path(self, source: SourceFile, suffix: str) -> Path:
        directory = str(self._config.temp_dir) if self._config.temp_dir else None
        fd, name = tempfile.mkstemp(suffix=suffix, prefix=f"{source.path.stem}-", dir=directory)
        os.close(fd)
        return Path(name)

    def _compress_image(self, source: SourceFile, settings: CompressionSettings) -> Path:
        output = self._temp_path(source, ".webp")
        try:
            with Image.open(source.path) as img:
                if img.mode not in ("RGB", "RGBA"):
                    has_alpha = img.mode in ("LA", "P", "PA") or "transparency" in img.info
                    img = img.convert("RGBA" if has_alpha else "RGB")
                img.thumbnail((settings.max_width, settings.max_height), Image.Resampling.LANCZOS)
                img.save(output, format="WEBP", quality=settings.quality, method=4)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            output.unlink(missing_ok=True)
            raise CompressionFailure(f"Image compression failed for {source.filename}: {e}", cause=e) from e
        return output

    async def _compress_video(self, source: SourceFile, settings: CompressionSettings) -> Path:
        if shutil.which("ffmpeg") is None:
            raise CompressionFailure("ffmpeg not found, cannot compress video")

        output = self._temp_path(source, ".mp4")
        cmd = self._ffmpeg_command(source.path, output, settings)
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self._config.compression_timeout,
            )
        except subprocess.TimeoutExpired as e:
            output.unlink(missing_ok=True)
            raise CompressionFailure(f"Video compression timed out for {source.filename}", cause=e) from e
        except OSError as e:
            output.unlink(missing_ok=True)
            raise CompressionFailure(f"Could not run ffmpeg: {e}", cause=e) from e

        if result.returncode != 0 or not output.exists() or output.stat().st_size == 0:
            output.unlink(missing_ok=True)
            stderr_tail = (result.stderr or "").strip().splitlines()[-1:] or ["no output"]
            raise CompressionFailure(f"ffmpeg failed ({result.returncode}) for {source.filename}: {stderr_tail[0]}")
        return output

    @staticmethod
    def _ffmpeg_command(input_path: Path, output_path: Path, settings: CompressionSettings) -> List[str]:
        scale = (
            f"scale='min({settings.max_width},iw)':'min({settings.max_height},ih)'"
            ":force_original_aspect_ratio=decrease,scale=trunc(iw/2)*2:trunc(ih/2)*2"
        )
        return [
            "ffmpeg",
            "-i", str(input_path),
            "-c:v", "libx264",
            "-preset", "medium",
            "-crf", str(_crf_for_quality(settings.quality)),
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
            "-pix_fmt", "yuv420p",
            "-vf", scale,
            "-y",
            str(output_path),
        ]
