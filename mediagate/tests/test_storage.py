import pytest

from mediagate.errors import NotFoundError
from mediagate.utils.storage import FOLDER_MIME_TYPE, FileKind, S3StorageGateway


@pytest.mark.parametrize("mime_type, kind", [
    ("image/png", FileKind.IMAGE),
    ("IMAGE/JPEG", FileKind.IMAGE),
    ("video/mp4", FileKind.VIDEO),
    (FOLDER_MIME_TYPE, FileKind.FOLDER),
    ("text/plain", FileKind.OTHER),
    (None, FileKind.OTHER),
])
def test_file_kind_from_mime_type(mime_type, kind):
    assert FileKind.from_mime_type(mime_type) is kind


def test_list_folder_returns_direct_children_sorted(storage, gallery):
    children = storage.list_folder(gallery)
    assert [c.name for c in children] == ["a.jpg", "b.png", "clips", "notes.txt"]

    clips = children[2]
    assert clips.is_folder
    assert clips.id == "gallery/clips/"
    assert clips.kind is FileKind.FOLDER

    image = children[0]
    assert image.kind is FileKind.IMAGE
    assert image.size > 0
    assert image.to_dict()["isFolder"] is False


def test_list_folder_accepts_id_without_trailing_slash(storage, gallery):
    assert [c.name for c in storage.list_folder("gallery/clips")] == ["intro.mp4"]


def test_list_root(storage, gallery):
    root = storage.list_folder("")
    assert [(c.id, c.is_folder) for c in root] == [("gallery/", True)]


def test_get_metadata_uses_content_type(storage, gallery):
    meta = storage.get_metadata("gallery/notes.txt")
    assert meta.mime_type == "text/plain"
    assert meta.kind is FileKind.OTHER
    assert meta.size == 5


def test_get_metadata_guesses_generic_content_type(storage, put_object):
    put_object("raw/shot.png", b"not-really-a-png")
    meta = storage.get_metadata("raw/shot.png")
    assert meta.mime_type == "image/png"
    assert meta.kind is FileKind.IMAGE


def test_get_metadata_for_folders(storage, gallery):
    folder = storage.get_metadata("gallery/clips/")
    assert folder.is_folder and folder.name == "clips"
    assert storage.get_metadata("").is_folder

    with pytest.raises(NotFoundError):
        storage.get_metadata("nowhere/")


def test_missing_file_raises_not_found(storage):
    with pytest.raises(NotFoundError):
        storage.get_metadata("missing.png")
    with pytest.raises(NotFoundError):
        storage.open_stream("missing.png")
    with pytest.raises(NotFoundError):
        storage.read_bytes("missing.png")


def test_open_stream_yields_object_bytes(storage, put_object):
    payload = b"x" * 3000
    put_object("big.bin", payload)
    storage.chunk_size = 1024
    chunks = list(storage.open_stream("big.bin"))
    assert b"".join(chunks) == payload
    assert len(chunks) == 3


class _RecordingBody:
    def __init__(self, payload: bytes):
        self.payload = payload
        self.closed = 0

    def iter_chunks(self, chunk_size):
        for start in range(0, len(self.payload), chunk_size):
            yield self.payload[start:start + chunk_size]

    def close(self):
        self.closed += 1


class _StubClient:
    def __init__(self, body):
        self.body = body

    def get_object(self, Bucket, Key):
        return {"Body": self.body}


def test_open_stream_closes_body_without_iterating():
    body = _RecordingBody(b"abc")
    stream = S3StorageGateway(_StubClient(body), "bucket").open_stream("a.bin")
    stream.close()
    stream.close()
    assert body.closed == 1
    assert list(stream) == []


def test_open_stream_closes_body_when_exhausted():
    body = _RecordingBody(b"abcdef")
    gateway = S3StorageGateway(_StubClient(body), "bucket", chunk_size=4)
    assert list(gateway.open_stream("a.bin")) == [b"abcd", b"ef"]
    assert body.closed == 1
