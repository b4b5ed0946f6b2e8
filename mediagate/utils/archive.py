"""
Zip archives of a whole folder tree.

Files are staged by a small worker pool (fetch, optionally watermark,
spool to a temporary file) and appended to the zip strictly in the
depth-first order of the walk. A file that fails to stage is logged and
left out; the archive carries on.
"""
from __future__ import annotations

import logging
import os
import posixpath
import tempfile
import threading
import zipfile
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from itertools import islice
from typing import Deque, Iterable, Iterator, List, Optional, Set, Tuple

from mediagate.errors import (
    AuthRequiredError,
    MediaGateError,
    ScopeMismatchError,
    UnsupportedTypeError,
)
from mediagate.utils.storage import FileKind, StoredFile

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024
SPOOL_MAX_MEMORY = 8 * 1024 * 1024
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class ArchiveEntry:
    file: StoredFile
    arcname: str


@dataclass
class _Staged:
    arcname: str
    spool: tempfile.SpooledTemporaryFile
    size: int
    date_time: Tuple[int, int, int, int, int, int]


class _ZipSink:
    """Write-only target for ZipFile; bytes are drained by the caller."""

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer += data
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def walk(storage, children: Iterable[StoredFile], prefix: str = "") -> Iterator[ArchiveEntry]:
    """Depth-first walk; subfolders contribute ``name/`` to the entry path."""
    for child in children:
        if not child.is_folder:
            yield ArchiveEntry(child, f"{prefix}{child.name}")
            continue
        try:
            grandchildren = storage.list_folder(child.id)
        except MediaGateError as exc:
            logger.warning("Skipping folder %s in archive: %s", child.id, exc.message)
            continue
        yield from walk(storage, grandchildren, f"{prefix}{child.name}/")


def _unique_arcname(arcname: str, taken: Set[str]) -> str:
    """Suffix ``name (1).ext``, ``name (2).ext``... until the name is free."""
    stem, ext = posixpath.splitext(arcname)
    candidate = arcname
    counter = 1
    while candidate in taken:
        candidate = f"{stem} ({counter}){ext}"
        counter += 1
    taken.add(candidate)
    return candidate


def _zip_date_time(moment: Optional[datetime]) -> Tuple[int, int, int, int, int, int]:
    stamp = tuple((moment or datetime.utcnow()).timetuple()[:6])
    return max(stamp, ZIP_EPOCH)


class ArchiveBuilder:
    def __init__(self, storage, images, videos, concurrency: int = 3,
                 size_limit: int = 50 * 1024 * 1024, video_policy: str = "transcode",
                 spool_max_memory: int = SPOOL_MAX_MEMORY):
        self.storage = storage
        self.images = images
        self.videos = videos
        self.concurrency = concurrency
        self.size_limit = size_limit
        self.video_policy = video_policy
        self.spool_max_memory = spool_max_memory

    @classmethod
    def from_settings(cls, settings, storage, images, videos) -> "ArchiveBuilder":
        return cls(
            storage, images, videos,
            concurrency=settings.archive_concurrency,
            size_limit=settings.archive_size_limit_bytes,
            video_policy=settings.archive_video_policy,
        )

    def build(self, folder_id: str, watermark: bool, token: Optional[str] = None,
              tokens=None) -> Tuple[StoredFile, Iterator[bytes]]:
        """
        Check access and list the top folder, then hand back the folder
        metadata and a lazy zip stream. Errors raised here happen before
        any byte of the archive exists.
        """
        if not watermark:
            if not token:
                raise AuthRequiredError("Token required")
            verified = tokens.verify(token, folder_id)
            if verified.file_type != FileKind.FOLDER.value:
                raise ScopeMismatchError("This token is not valid for a folder download")

        folder = self.storage.get_metadata(folder_id)
        if not folder.is_folder:
            raise UnsupportedTypeError(f"{folder_id} is not a folder")
        children = self.storage.list_folder(folder_id)
        return folder, self.stream(children, watermark, folder_id)

    def stream(self, children: List[StoredFile], watermark: bool,
               folder_id: str = "") -> Iterator[bytes]:
        sink = _ZipSink()
        entries = walk(self.storage, children)
        pending: Deque[Future] = deque()
        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="archive")
        cancelled = threading.Event()
        taken: Set[str] = set()
        written = skipped = 0

        try:
            with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
                for entry in islice(entries, self.concurrency):
                    pending.append(pool.submit(self._stage, entry, watermark, cancelled))

                while pending:
                    staged = pending.popleft().result()
                    next_entry = next(entries, None)
                    if next_entry is not None:
                        pending.append(pool.submit(self._stage, next_entry, watermark, cancelled))

                    if staged is None:
                        skipped += 1
                        continue
                    staged.arcname = _unique_arcname(staged.arcname, taken)
                    yield from self._append(archive, sink, staged)
                    written += 1

            tail = sink.drain()
            if tail:
                yield tail
            logger.info(
                "Archive of %s finished: %s written, %s skipped (watermark=%s)",
                folder_id or "root", written, skipped, watermark,
            )
        finally:
            # workers still fetching or transcoding stop at their next chunk
            cancelled.set()
            pool.shutdown(wait=True, cancel_futures=True)
            for future in pending:
                if future.done() and not future.cancelled() and future.result() is not None:
                    future.result().spool.close()

    def _append(self, archive: zipfile.ZipFile, sink: _ZipSink, staged: _Staged) -> Iterator[bytes]:
        info = zipfile.ZipInfo(staged.arcname, date_time=staged.date_time)
        info.compress_type = zipfile.ZIP_DEFLATED
        force_zip64 = staged.size >= zipfile.ZIP64_LIMIT // 2
        with staged.spool, archive.open(info, mode="w", force_zip64=force_zip64) as dest:
            while True:
                chunk = staged.spool.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                dest.write(chunk)
                data = sink.drain()
                if data:
                    yield data
        data = sink.drain()
        if data:
            yield data

    def _stage(self, entry: ArchiveEntry, watermark: bool,
               cancelled: threading.Event) -> Optional[_Staged]:
        """Runs on a worker thread. Returns None when the file is left out."""
        file = entry.file
        arcname = entry.arcname

        if watermark:
            if file.size is not None and file.size > self.size_limit:
                logger.warning("Skipping %s in archive: %s bytes exceeds limit", file.id, file.size)
                return None
            if file.kind is FileKind.VIDEO and self.video_policy == "skip":
                logger.info("Skipping video %s in watermarked archive", file.id)
                return None
            if file.kind not in (FileKind.IMAGE, FileKind.VIDEO):
                logger.info("Skipping %s in watermarked archive: type %s", file.id, file.mime_type)
                return None

        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_max_memory)
        chunks = None
        try:
            if not watermark:
                chunks = self.storage.open_stream(file.id)
            elif file.kind is FileKind.IMAGE:
                chunks = iter([self.images.apply(self.storage.read_bytes(file.id))])
                arcname = f"{os.path.splitext(arcname)[0]}{self.images.extension}"
            else:
                chunks = self.videos.stream(self.storage.open_stream(file.id))
                arcname = f"{os.path.splitext(arcname)[0]}{self.videos.extension}"

            for chunk in chunks:
                if cancelled.is_set():
                    logger.info("Archive closed, abandoning %s", file.id)
                    spool.close()
                    return None
                spool.write(chunk)
        except MediaGateError as exc:
            spool.close()
            logger.warning("Skipping %s in archive: %s", file.id, exc.message)
            return None
        except Exception:
            spool.close()
            logger.exception("Unexpected failure staging %s for archive", file.id)
            return None
        finally:
            # kills a running transcoder and releases the storage connection
            _close(chunks)

        size = spool.tell()
        spool.seek(0)
        return _Staged(arcname, spool, size, _zip_date_time(file.modified_time))


def _close(stream) -> None:
    close = getattr(stream, "close", None)
    if close is not None:
        close()
