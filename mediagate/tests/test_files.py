import io
import time
from dataclasses import replace

from fastapi.testclient import TestClient
from PIL import Image

from mediagate.file_server import ServedFile
from mediagate.main import create_app
from mediagate.tests.conftest import ECHO_COMMAND, FAIL_COMMAND, image_bytes


def test_drive_folder_listing(client, gallery, app):
    res = client.get("/drive-folder")
    assert res.status_code == 200
    assert [item["id"] for item in res.json()] == ["gallery/"]

    res = client.get("/drive-folder/gallery")
    items = {item["name"]: item for item in res.json()}
    assert set(items) == {"a.jpg", "b.png", "clips", "notes.txt"}
    assert items["clips"]["isFolder"] is True
    assert items["a.jpg"]["mimeType"] == "image/jpeg"
    assert set(items["a.jpg"]) >= {"id", "name", "mimeType", "size", "modifiedTime", "isFolder"}


def test_file_info(client, gallery):
    res = client.get("/file-info/gallery/b.png")
    assert res.status_code == 200
    assert res.json()["kind"] == "image"
    assert client.get("/file-info/gallery/missing.png").status_code == 404


def test_watermark_image_needs_no_token(client, gallery):
    res = client.get("/file/gallery/b.png/watermark")
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/jpeg"
    with Image.open(io.BytesIO(res.content)) as img:
        assert img.format == "JPEG"
        assert img.size == (64, 48)


def test_watermark_rejects_unsupported_type(client, gallery):
    res = client.get("/file/gallery/notes.txt/watermark")
    assert res.status_code == 400
    assert res.json()["code"] == "UnsupportedTypeError"


def test_watermark_corrupt_image_is_a_generic_500(client, put_object):
    put_object("broken.jpg", b"garbage", "image/jpeg")
    res = client.get("/file/broken.jpg/watermark")
    assert res.status_code == 500
    assert res.json() == {"error": "Failed to process file", "code": "ProcessingError"}


def test_watermark_video_streams_transcoder_output(client, app, gallery, monkeypatch):
    monkeypatch.setattr(app.state.file_server.videos, "build_command", lambda: ECHO_COMMAND)
    res = client.get("/file/gallery/clips/intro.mp4/watermark")
    assert res.status_code == 200
    assert res.headers["content-type"] == "video/mp4"
    assert res.content == b"\x00\x00\x00\x18ftypmp42fake-video"


def test_watermark_video_failure_before_first_byte(client, app, gallery, monkeypatch):
    monkeypatch.setattr(app.state.file_server.videos, "build_command", lambda: FAIL_COMMAND)
    res = client.get("/file/gallery/clips/intro.mp4/watermark")
    assert res.status_code == 500
    assert res.json()["code"] == "ProcessingError"


def test_generate_token_and_download(client, gallery, issue):
    res = client.post(
        "/generate-token",
        json={"name": "Alice", "email": "alice@example.com", "fileId": "gallery/b.png"},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["fileId"] == "gallery/b.png"
    assert body["expiresAt"]

    download = client.get("/download/gallery/b.png", params={"token": body["token"]})
    assert download.status_code == 200
    assert download.content == image_bytes()
    assert download.headers["content-type"] == "image/png"
    assert download.headers["content-length"] == str(len(image_bytes()))
    assert "attachment" in download.headers["content-disposition"]
    assert "b.png" in download.headers["content-disposition"]


def test_generate_token_twice_is_a_conflict(client, gallery, issue):
    issue("gallery/a.jpg")
    res = client.post(
        "/generate-token",
        json={"name": "Alice", "email": "alice@example.com", "fileId": "gallery/a.jpg"},
    )
    assert res.status_code == 409
    assert res.json()["code"] == "ConflictError"


def test_generate_token_validation(client, gallery):
    res = client.post("/generate-token", json={"name": "Alice", "fileId": "gallery/a.jpg"})
    assert res.status_code == 400
    res = client.post(
        "/generate-token",
        json={"name": "Alice", "email": "nope", "fileId": "gallery/a.jpg"},
    )
    assert res.status_code == 400
    assert res.json()["code"] == "ValidationError"


def test_download_requires_token(client, gallery):
    res = client.get("/download/gallery/a.jpg")
    assert res.status_code == 401
    assert res.json()["code"] == "AuthRequiredError"


def test_download_with_token_for_other_file(client, gallery, issue):
    token = issue("gallery/b.png")
    res = client.get("/download/gallery/a.jpg", params={"token": token})
    assert res.status_code == 403
    assert res.json()["code"] == "ScopeMismatchError"


def test_download_with_garbage_token(client, gallery):
    res = client.get("/download/gallery/a.jpg", params={"token": "abc.def.ghi"})
    assert res.status_code == 403
    assert res.json()["code"] == "InvalidTokenError"


def test_revoke_requires_admin_and_blocks_download(client, gallery, issue, admin_header):
    token = issue("gallery/a.jpg")
    assert client.delete("/revoke-token/gallery/a.jpg").status_code == 401

    res = client.delete("/revoke-token/gallery/a.jpg", headers=admin_header)
    assert res.status_code == 200
    assert res.json() == {"success": True, "revoked": 1}

    res = client.get("/download/gallery/a.jpg", params={"token": token})
    assert res.status_code == 403
    assert res.json()["code"] == "RevokedTokenError"


def test_token_lookup_routes(client, gallery, issue, admin_header):
    assert client.get("/token-for-file/gallery/a.jpg", headers=admin_header).status_code == 404

    alice = issue("gallery/a.jpg", email="alice@example.com", name="Alice")
    issue("gallery/a.jpg", email="bob@example.com", name="Bob")

    single = client.get("/token-for-file/gallery/a.jpg", headers=admin_header).json()
    assert single["token"] == alice
    assert single["fileName"] == "a.jpg"

    many = client.get("/tokens-for-file/gallery/a.jpg", headers=admin_header).json()
    assert [t["ownerEmail"] for t in many] == ["alice@example.com", "bob@example.com"]


def test_token_info(client, gallery, issue):
    token = issue("gallery/a.jpg")
    res = client.get(f"/token-info/{token}")
    assert res.status_code == 200
    assert res.json()["file"]["id"] == "gallery/a.jpg"
    assert client.get("/token-info/not-a-token").status_code == 403


def test_verify_folder_token(client, gallery, issue):
    folder_token = issue("gallery/clips/")
    res = client.post("/verify-folder-token",
                      json={"token": folder_token, "fileId": "gallery/clips/"})
    assert res.status_code == 200
    assert res.json()["valid"] is True
    assert res.json()["tokenData"]["fileType"] == "folder"

    file_token = issue("gallery/a.jpg")
    res = client.post("/verify-folder-token", json={"token": file_token, "fileId": "gallery/a.jpg"})
    assert res.status_code == 403

    res = client.post("/verify-folder-token", json={"fileId": "gallery/clips/"})
    assert res.status_code == 401
    assert res.json()["code"] == "AuthRequiredError"


def test_slow_request_times_out_before_headers(settings, storage, gallery):
    app = create_app(replace(settings, request_timeout_seconds=0.2), storage=storage)

    class SlowServer:
        def serve_watermarked(self, file_id):
            time.sleep(1)
            return ServedFile(body=iter([b"late"]), media_type="text/plain", filename="late.txt")

    app.state.file_server = SlowServer()
    res = TestClient(app).get("/file/gallery/a.jpg/watermark")
    assert res.status_code == 504
    assert res.json() == {"error": "timeout"}
