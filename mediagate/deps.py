from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from mediagate.database import get_db
from mediagate.file_server import FileServer
from mediagate.token_service import TokenService
from mediagate.utils.archive import ArchiveBuilder
from mediagate.utils.storage import S3StorageGateway


def get_storage(request: Request) -> S3StorageGateway:
    return request.app.state.storage


def get_file_server(request: Request) -> FileServer:
    return request.app.state.file_server


def get_archive_builder(request: Request) -> ArchiveBuilder:
    return request.app.state.archive_builder


def get_token_service(request: Request, db: Session = Depends(get_db)) -> TokenService:
    settings = request.app.state.settings
    return TokenService(
        db,
        request.app.state.storage,
        settings.secret_key,
        algorithm=settings.algorithm,
        lifetime=timedelta(days=settings.token_lifetime_days),
    )
