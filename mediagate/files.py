import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from mediagate.deps import get_archive_builder, get_file_server, get_storage, get_token_service
from mediagate.file_server import FileServer, ServedFile
from mediagate.token_service import TokenService
from mediagate.utils.archive import ArchiveBuilder
from mediagate.utils.storage import S3StorageGateway

router = APIRouter()
logger = logging.getLogger(__name__)


def _as_folder_id(folder_id: str) -> str:
    folder_id = folder_id.strip("/")
    return f"{folder_id}/" if folder_id else ""


def _respond(served: ServedFile) -> StreamingResponse:
    return StreamingResponse(served.body, media_type=served.media_type, headers=served.headers)


@router.get("/drive-folder")
def list_root_folder(
    request: Request,
    storage: S3StorageGateway = Depends(get_storage),
):
    root = request.app.state.settings.root_folder_id
    return [item.to_dict() for item in storage.list_folder(root)]


@router.get("/drive-folder/{folder_id:path}")
def list_folder(folder_id: str, storage: S3StorageGateway = Depends(get_storage)):
    return [item.to_dict() for item in storage.list_folder(_as_folder_id(folder_id))]


@router.get("/file-info/{file_id:path}")
def file_info(file_id: str, storage: S3StorageGateway = Depends(get_storage)):
    return storage.get_metadata(file_id).to_dict()


@router.get("/file/{file_id:path}/watermark")
def watermarked_file(file_id: str, server: FileServer = Depends(get_file_server)):
    return _respond(server.serve_watermarked(file_id))


@router.get("/download/{file_id:path}")
def download_file(
    file_id: str,
    token: Optional[str] = Query(None),
    server: FileServer = Depends(get_file_server),
    tokens: TokenService = Depends(get_token_service),
):
    served = server.serve_clean(file_id, token, tokens)
    logger.info("Clean download of %s", file_id)
    return _respond(served)


def _zip_response(folder, chunks, suffix: str) -> StreamingResponse:
    filename = f"{folder.name}{suffix}.zip"
    return StreamingResponse(
        chunks,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.get("/folder/{folder_id:path}/watermark-zip")
def watermarked_zip(folder_id: str, builder: ArchiveBuilder = Depends(get_archive_builder)):
    folder, chunks = builder.build(_as_folder_id(folder_id), watermark=True)
    return _zip_response(folder, chunks, "-watermarked")


@router.get("/folder/{folder_id:path}/clean-zip")
def clean_zip(
    folder_id: str,
    token: Optional[str] = Query(None),
    builder: ArchiveBuilder = Depends(get_archive_builder),
    tokens: TokenService = Depends(get_token_service),
):
    folder, chunks = builder.build(
        _as_folder_id(folder_id), watermark=False, token=token, tokens=tokens)
    return _zip_response(folder, chunks, "")
