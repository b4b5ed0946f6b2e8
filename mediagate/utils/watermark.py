"""
Watermark engine.

Images are small enough to be decoded, composited and re-encoded in
memory. Videos are piped through ffmpeg chunk by chunk and never held in
memory as a whole.
"""
from __future__ import annotations

import io
import logging
import os
import random
import subprocess
import tempfile
import threading
from typing import Iterable, Iterator, List, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from mediagate.errors import MediaGateError, ProcessingError

logger = logging.getLogger(__name__)

VIDEO_CHUNK_SIZE = 64 * 1024
MIN_TILE_SIZE = 50
TILE_WIDTH_RATIO = 0.1


def _load_logo(logo_path: str) -> Image.Image:
    if not os.path.isfile(logo_path):
        raise RuntimeError(f"Watermark logo not found at {logo_path}")
    try:
        with Image.open(logo_path) as logo:
            return logo.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise RuntimeError(f"Watermark logo at {logo_path} is not a readable image") from exc


def _fade(logo: Image.Image, opacity: float) -> Image.Image:
    faded = logo.copy()
    alpha = faded.getchannel("A").point(lambda value: round(value * opacity))
    faded.putalpha(alpha)
    return faded


class ImageWatermarker:
    content_type = "image/jpeg"
    extension = ".jpg"

    def __init__(self, logo_path: str, mode: str = "center-cover", opacity: float = 0.3,
                 tile_count: int = 5, quality: int = 80):
        self.mode = mode
        self.opacity = opacity
        self.tile_count = tile_count
        self.quality = quality
        self._logo = _fade(_load_logo(logo_path), opacity)

    @classmethod
    def from_settings(cls, settings) -> "ImageWatermarker":
        return cls(
            settings.watermark_logo_path,
            mode=settings.watermark_mode,
            opacity=settings.watermark_opacity,
            tile_count=settings.watermark_tile_count,
            quality=settings.watermark_quality,
        )

    def apply(self, source: bytes) -> bytes:
        """Return ``source`` as a JPEG with the logo blended over it."""
        try:
            with Image.open(io.BytesIO(source)) as img:
                base = img.convert("RGBA")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise ProcessingError(f"Unreadable image: {exc}") from exc

        base.alpha_composite(self._overlay(base.size))

        out = io.BytesIO()
        base.convert("RGB").save(out, format="JPEG", quality=self.quality)
        return out.getvalue()

    def _overlay(self, size: Tuple[int, int]) -> Image.Image:
        if self.mode == "tiled-random":
            return self._tiled_overlay(size)
        # logo scaled to cover the whole frame, cropped around its centre
        return ImageOps.fit(self._logo, size, method=Image.Resampling.LANCZOS)

    def _tiled_overlay(self, size: Tuple[int, int]) -> Image.Image:
        width, height = size
        tile_size = min(max(MIN_TILE_SIZE, round(width * TILE_WIDTH_RATIO)), width, height)
        tile = self._logo.copy()
        tile.thumbnail((tile_size, tile_size), Image.Resampling.LANCZOS)

        # same dimensions always give the same layout
        rng = random.Random(f"{width}x{height}")
        overlay = Image.new("RGBA", size, (0, 0, 0, 0))
        for _ in range(self.tile_count):
            left = rng.randint(0, max(width - tile.width, 0))
            top = rng.randint(0, max(height - tile.height, 0))
            overlay.alpha_composite(tile, dest=(left, top))
        return overlay


class VideoWatermarker:
    """Overlay the logo on a video stream with an external ffmpeg process.

    Output is fragmented MP4 so the first bytes can go out before the
    transcode finishes. Audio is copied as-is.
    """

    content_type = "video/mp4"
    extension = ".mp4"

    def __init__(self, logo_path: str, ffmpeg_path: str = "ffmpeg", opacity: float = 0.3,
                 chunk_size: int = VIDEO_CHUNK_SIZE):
        _load_logo(logo_path)
        self.logo_path = os.path.abspath(logo_path)
        self.ffmpeg_path = ffmpeg_path
        self.opacity = opacity
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings) -> "VideoWatermarker":
        return cls(
            settings.watermark_logo_path,
            ffmpeg_path=settings.ffmpeg_path,
            opacity=settings.watermark_opacity,
        )

    def build_command(self) -> List[str]:
        overlay = (
            f"[1:v]format=rgba,colorchannelmixer=aa={self.opacity}[wm];"
            "[0:v][wm]overlay=(W-w)/2:(H-h)/2[out]"
        )
        return [
            self.ffmpeg_path, "-hide_banner", "-loglevel", "error",
            "-i", "pipe:0",
            "-i", self.logo_path,
            "-filter_complex", overlay,
            "-map", "[out]", "-map", "0:a?",
            "-c:v", "libx264", "-preset", "ultrafast", "-tune", "zerolatency",
            "-c:a", "copy",
            "-movflags", "frag_keyframe+empty_moov+default_base_moof",
            "-f", "mp4", "pipe:1",
        ]

    def stream(self, source: Iterable[bytes]) -> Iterator[bytes]:
        """
        Yield watermarked MP4 chunks for the video bytes in ``source``.

        ``source`` is consumed on a feeder thread and closed when done.
        Closing the returned generator kills the transcoder.
        """
        command = self.build_command()
        stderr = tempfile.TemporaryFile()
        try:
            proc = subprocess.Popen(
                command, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=stderr)
        except OSError as exc:
            stderr.close()
            _close(source)
            raise ProcessingError(f"Could not start transcoder: {exc}") from exc

        feed_errors: List[Exception] = []
        feeder = threading.Thread(
            target=_feed, args=(proc, source, feed_errors), name="ffmpeg-feeder", daemon=True)
        feeder.start()

        try:
            while True:
                chunk = proc.stdout.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
            returncode = proc.wait()
            feeder.join()
            if feed_errors:
                raise feed_errors[0]
            if returncode != 0:
                stderr.seek(0)
                detail = stderr.read()[-500:].decode("utf-8", "replace").strip()
                logger.error("ffmpeg exited with %s: %s", returncode, detail)
                raise ProcessingError(f"Transcoder exited with status {returncode}")
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            proc.stdout.close()
            feeder.join(timeout=5)
            stderr.close()


def _feed(proc: subprocess.Popen, source: Iterable[bytes], errors: List[Exception]) -> None:
    try:
        for chunk in source:
            proc.stdin.write(chunk)
    except (BrokenPipeError, ValueError):
        # transcoder stopped reading; its exit status tells the rest
        pass
    except MediaGateError as exc:
        errors.append(exc)
    except OSError as exc:
        errors.append(ProcessingError(f"Feeding transcoder failed: {exc}"))
    finally:
        _close(source)
        try:
            proc.stdin.close()
        except (BrokenPipeError, OSError):
            pass


def _close(source) -> None:
    close = getattr(source, "close", None)
    if close is not None:
        close()
