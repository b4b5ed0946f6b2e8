# mediagate/main.py
import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mediagate import auth, files, models, tokens
from mediagate.config import Settings
from mediagate.database import make_engine, make_session_factory
from mediagate.errors import MediaGateError, ProcessingError
from mediagate.file_server import FileServer
from mediagate.utils.archive import ArchiveBuilder
from mediagate.utils.storage import S3StorageGateway
from mediagate.utils.watermark import ImageWatermarker, VideoWatermarker

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None,
               storage: Optional[S3StorageGateway] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # a missing logo stops startup here, before any request is accepted
    images = ImageWatermarker.from_settings(settings)
    videos = VideoWatermarker.from_settings(settings)

    engine = make_engine(settings.database_url)
    models.Base.metadata.create_all(bind=engine)
    session_factory = make_session_factory(engine)
    storage = storage or S3StorageGateway.from_settings(settings)

    if settings.admin_email and settings.admin_password:
        with session_factory() as db:
            auth.ensure_admin(db, settings.admin_email, settings.admin_password)

    app = FastAPI(title="MediaGate")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.storage = storage
    app.state.file_server = FileServer(storage, images, videos)
    app.state.archive_builder = ArchiveBuilder.from_settings(settings, storage, images, videos)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def enforce_response_timeout(request: Request, call_next):
        # bounds the time until headers; an already streaming body is not cut
        try:
            return await asyncio.wait_for(
                call_next(request), timeout=settings.request_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Timed out before responding to %s %s",
                           request.method, request.url.path)
            return JSONResponse(status_code=504, content={"error": "timeout"})

    @app.exception_handler(MediaGateError)
    async def media_gate_error_handler(request: Request, exc: MediaGateError):
        code = type(exc).__name__
        if exc.expose:
            return JSONResponse(
                status_code=exc.status_code, content={"error": exc.message, "code": code})

        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        if isinstance(exc, ProcessingError):
            detail = "Failed to process file"
        else:
            detail = "Storage service unavailable"
        return JSONResponse(status_code=exc.status_code, content={"error": detail, "code": code})

    app.include_router(auth.router)
    app.include_router(tokens.router)
    app.include_router(files.router)

    @app.get("/healthz")
    def health_check():
        """
        Health check endpoint that verifies DB and storage connectivity.
        Returns 200 if healthy, 503 if any dependency is unavailable.
        """
        health_status = {"status": "healthy", "checks": {}}

        try:
            with session_factory() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = "ok"
        except Exception as exc:
            logger.error("Health check: Database connection failed: %s", exc)
            health_status["checks"]["database"] = "failed"
            health_status["status"] = "unhealthy"

        try:
            storage.ping()
            health_status["checks"]["storage"] = "ok"
        except Exception as exc:
            logger.error("Health check: storage connection failed: %s", exc)
            health_status["checks"]["storage"] = "failed"
            health_status["status"] = "unhealthy"

        if health_status["status"] == "unhealthy":
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
