"""
S3-backed Storage Gateway.

Objects are files, key prefixes ending in ``/`` are folders and ``""`` is
the bucket root. The gateway is the single place where a content type is
turned into a :class:`FileKind`.
"""
from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mediagate.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/x-directory"
GENERIC_BINARY_TYPES = {"", "binary/octet-stream", "application/octet-stream"}
CHUNK_SIZE = 1024 * 1024
_MISSING_CODES = {"NoSuchKey", "404", "NotFound", "NoSuchBucket"}


class FileKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    FOLDER = "folder"
    OTHER = "file"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "FileKind":
        mime_type = (mime_type or "").lower()
        if mime_type.startswith("image/"):
            return cls.IMAGE
        if mime_type.startswith("video/"):
            return cls.VIDEO
        if mime_type == FOLDER_MIME_TYPE:
            return cls.FOLDER
        return cls.OTHER


@dataclass(frozen=True)
class StoredFile:
    id: str
    name: str
    mime_type: str
    kind: FileKind
    size: Optional[int] = None
    modified_time: Optional[datetime] = None

    @property
    def is_folder(self) -> bool:
        return self.kind is FileKind.FOLDER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mimeType": self.mime_type,
            "size": self.size,
            "modifiedTime": self.modified_time.isoformat() if self.modified_time else None,
            "isFolder": self.is_folder,
            "kind": self.kind.value,
        }


def is_folder_id(file_id: str) -> bool:
    return file_id == "" or file_id.endswith("/")


def _folder_name(folder_id: str) -> str:
    return posixpath.basename(folder_id.rstrip("/")) or "root"


def _guess_mime_type(key: str) -> str:
    mime, _ = mimetypes.guess_type(key)
    return mime or "application/octet-stream"


def _folder(folder_id: str) -> StoredFile:
    return StoredFile(
        id=folder_id,
        name=_folder_name(folder_id),
        mime_type=FOLDER_MIME_TYPE,
        kind=FileKind.FOLDER,
    )


class S3StorageGateway:
    """Read-only view of a bucket as a folder tree."""

    def __init__(self, client, bucket: str, chunk_size: int = CHUNK_SIZE):
        self._client = client
        self.bucket = bucket
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings) -> "S3StorageGateway":
        client = boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
        return cls(client, settings.s3_bucket_name)

    def _translate(self, exc: Exception, file_id: str, operation: str) -> Exception:
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code")
            if code in _MISSING_CODES:
                return NotFoundError(f"File not found: {file_id}")
            logger.error("S3 %s failed for %s: %s", operation, file_id, code)
        else:
            logger.error("S3 %s failed for %s: %s", operation, file_id, exc)
        return UpstreamError(f"Storage {operation} failed")

    def ping(self) -> None:
        self._client.head_bucket(Bucket=self.bucket)

    def list_folder(self, folder_id: str) -> List[StoredFile]:
        """Direct children of a folder, folders and files sorted by name."""
        if not is_folder_id(folder_id):
            folder_id = f"{folder_id}/"

        children: List[StoredFile] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=folder_id, Delimiter="/"):
                for common in page.get("CommonPrefixes", []):
                    children.append(_folder(common["Prefix"]))
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if key == folder_id:
                        continue
                    children.append(
                        StoredFile(
                            id=key,
                            name=posixpath.basename(key),
                            mime_type=_guess_mime_type(key),
                            kind=FileKind.from_mime_type(_guess_mime_type(key)),
                            size=obj.get("Size"),
                            modified_time=obj.get("LastModified"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, folder_id, "list") from exc

        children.sort(key=lambda item: item.name.lower())
        return children

    def get_metadata(self, file_id: str) -> StoredFile:
        if is_folder_id(file_id):
            return self._folder_metadata(file_id)

        try:
            head = self._client.head_object(Bucket=self.bucket, Key=file_id)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, file_id, "head") from exc

        mime_type = (head.get("ContentType") or "").split(";")[0].strip().lower()
        if mime_type in GENERIC_BINARY_TYPES:
            mime_type = _guess_mime_type(file_id)
        return StoredFile(
            id=file_id,
            name=posixpath.basename(file_id),
            mime_type=mime_type,
            kind=FileKind.from_mime_type(mime_type),
            size=head.get("ContentLength"),
            modified_time=head.get("LastModified"),
        )

    def _folder_metadata(self, folder_id: str) -> StoredFile:
        if folder_id:
            try:
                page = self._client.list_objects_v2(
                    Bucket=self.bucket, Prefix=folder_id, MaxKeys=1)
            except (ClientError, BotoCoreError) as exc:
                raise self._translate(exc, folder_id, "list") from exc
            if not page.get("KeyCount"):
                raise NotFoundError(f"Folder not found: {folder_id}")
        return _folder(folder_id)

    def read_bytes(self, file_id: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=file_id)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, file_id, "download") from exc

    def open_stream(self, file_id: str) -> BodyStream:
        """
        Start downloading an object and return an iterator over its chunks.
        The request is issued immediately so a missing object fails here,
        not on first iteration. Closing the iterator closes the connection.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=file_id)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate(exc, file_id, "download") from exc
        return BodyStream(self, response["Body"], file_id)


class BodyStream:
    """Chunks of one S3 object body. ``close()`` releases the connection
    whether or not iteration has started."""

    def __init__(self, gateway: S3StorageGateway, body, file_id: str):
        self._gateway = gateway
        self._body = body
        self._chunks = body.iter_chunks(gateway.chunk_size)
        self.file_id = file_id
        self.closed = False

    def __iter__(self) -> "BodyStream":
        return self

    def __next__(self) -> bytes:
        if self.closed:
            raise StopIteration
        try:
            return next(self._chunks)
        except StopIteration:
            self.close()
            raise
        except (ClientError, BotoCoreError) as exc:
            self.close()
            raise self._gateway._translate(exc, self.file_id, "download") from exc

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._body.close()
