"""
Public (watermarked) and token-gated (clean) file delivery.

Bodies are iterators of bytes. Anything that can fail before the first
byte is pulled eagerly, so errors still become a proper status code.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterator, Optional
from urllib.parse import quote

from mediagate.errors import AuthRequiredError, UnsupportedTypeError
from mediagate.utils.storage import FileKind

logger = logging.getLogger(__name__)


@dataclass
class ServedFile:
    body: Iterator[bytes]
    media_type: str
    filename: str
    size: Optional[int] = None
    disposition: str = "inline"

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Disposition": f"{self.disposition}; filename*=UTF-8''{quote(self.filename)}",
        }
        if self.size is not None:
            headers["Content-Length"] = str(self.size)
        return headers


def prime(chunks: Iterator[bytes]) -> Iterator[bytes]:
    """Pull the first chunk now so a failing pipeline raises before headers go out."""
    try:
        first = next(chunks)
    except StopIteration:
        return iter(())
    return _resume(first, chunks)


def _resume(first: bytes, rest: Iterator[bytes]) -> Iterator[bytes]:
    try:
        yield first
        yield from rest
    finally:
        close = getattr(rest, "close", None)
        if close is not None:
            close()


def _with_extension(name: str, extension: str) -> str:
    return f"{os.path.splitext(name)[0] or 'file'}{extension}"


class FileServer:
    def __init__(self, storage, images, videos):
        self.storage = storage
        self.images = images
        self.videos = videos

    def serve_watermarked(self, file_id: str) -> ServedFile:
        meta = self.storage.get_metadata(file_id)

        if meta.kind is FileKind.IMAGE:
            data = self.images.apply(self.storage.read_bytes(file_id))
            logger.info("Watermarked image %s (%s bytes)", file_id, len(data))
            return ServedFile(
                body=iter([data]),
                media_type=self.images.content_type,
                filename=_with_extension(meta.name, self.images.extension),
                size=len(data),
            )

        if meta.kind is FileKind.VIDEO:
            chunks = prime(self.videos.stream(self.storage.open_stream(file_id)))
            return ServedFile(
                body=chunks,
                media_type=self.videos.content_type,
                filename=_with_extension(meta.name, self.videos.extension),
            )

        raise UnsupportedTypeError(f"Cannot watermark files of type {meta.mime_type}")

    def serve_clean(self, file_id: str, token: Optional[str], tokens) -> ServedFile:
        if not token:
            raise AuthRequiredError("Token required")
        # nothing is read from storage until the token checks out
        tokens.verify(token, file_id)

        meta = self.storage.get_metadata(file_id)
        if meta.is_folder:
            raise UnsupportedTypeError("Folders can only be downloaded as archives")

        return ServedFile(
            body=self.storage.open_stream(file_id),
            media_type=meta.mime_type,
            filename=meta.name,
            size=meta.size,
            disposition="attachment",
        )
