# mediagate/tests/conftest.py
import io
import os
import secrets
import sys

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws
from PIL import Image

os.environ.setdefault("TESTING", "1")

from mediagate.config import Settings
from mediagate.main import create_app
from mediagate.utils.storage import S3StorageGateway

# ───────────────────────────────  constants  ──────────────────────────────
AWS_REGION      = "eu-north-1"
BUCKET_NAME     = "mediagate-tests"
ADMIN_EMAIL     = "admin@example.com"
ADMIN_PASSWORD  = "P@ssw0rd!"
LOGO_PATH       = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
    "static", "watermark", "logo.png",
)


# stand-ins for ffmpeg: copy stdin to stdout as it arrives, or fail after reading
ECHO_COMMAND = [
    sys.executable, "-c",
    "import sys\n"
    "while True:\n"
    "    chunk = sys.stdin.buffer.read1(65536)\n"
    "    if not chunk:\n"
    "        break\n"
    "    sys.stdout.buffer.write(chunk)\n"
    "    sys.stdout.buffer.flush()\n",
]
FAIL_COMMAND = [sys.executable, "-c", "import sys; sys.stdin.buffer.read(); sys.exit(3)"]


def image_bytes(size=(64, 48), fmt="PNG", color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


# ────────────────────────────── settings / db ─────────────────────────────
@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        secret_key=secrets.token_urlsafe(32),
        s3_bucket_name=BUCKET_NAME,
        aws_region=AWS_REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        watermark_logo_path=LOGO_PATH,
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
    )


# ─────────────────────────── fake S3 for every test ───────────────────────
@pytest.fixture
def s3():
    with mock_aws():                # moto intercepts all AWS calls
        client = boto3.client(
            "s3",
            region_name=AWS_REGION,
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        client.create_bucket(
            Bucket=BUCKET_NAME,
            CreateBucketConfiguration={"LocationConstraint": AWS_REGION},
        )
        yield client


@pytest.fixture
def storage(s3):
    return S3StorageGateway(s3, BUCKET_NAME)


@pytest.fixture
def put_object(s3):
    def _put(key, body, content_type=None):
        extra = {"ContentType": content_type} if content_type else {}
        s3.put_object(Bucket=BUCKET_NAME, Key=key, Body=body, **extra)
        return key
    return _put


@pytest.fixture
def gallery(put_object):
    """A small tree: two images, a video and a text file, one nested folder."""
    put_object("gallery/b.png", image_bytes(), "image/png")
    put_object("gallery/a.jpg", image_bytes(fmt="JPEG"), "image/jpeg")
    put_object("gallery/notes.txt", b"hello", "text/plain")
    put_object("gallery/clips/intro.mp4", b"\x00\x00\x00\x18ftypmp42fake-video", "video/mp4")
    return "gallery/"


# ───────────────────────────── app / client  ──────────────────────────────
@pytest.fixture
def app(settings, storage):
    return create_app(settings, storage=storage)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(app):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


# ───── helper: log the seeded admin in and return auth header (Bearer …) ──
@pytest.fixture
def admin_header(client):
    res = client.post(
        "/admin/login",
        data={"username": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def issue(client):
    def _issue(file_id, email="alice@example.com", name="Alice"):
        res = client.post(
            "/generate-token",
            json={"name": name, "email": email, "fileId": file_id},
        )
        assert res.status_code == 200, res.text
        return res.json()["token"]
    return _issue
