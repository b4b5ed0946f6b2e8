"""Environment-driven settings for the media gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

WATERMARK_MODES = ("center-cover", "tiled-random")
VIDEO_POLICIES = ("transcode", "skip")


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} environment variable is required")
    return value


def _origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    s3_bucket_name: str
    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    root_folder_id: str = ""

    algorithm: str = "HS256"
    token_lifetime_days: int = 30
    admin_token_expire_minutes: int = 60
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    watermark_logo_path: str = os.path.join("static", "watermark", "logo.png")
    watermark_mode: str = "center-cover"
    watermark_tile_count: int = 5
    watermark_opacity: float = 0.3
    watermark_quality: int = 80
    ffmpeg_path: str = "ffmpeg"

    archive_concurrency: int = 3
    archive_size_limit_mb: int = 50
    archive_video_policy: str = "transcode"

    request_timeout_seconds: float = 300.0
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"])
    log_level: str = "INFO"

    def __post_init__(self):
        if self.watermark_mode not in WATERMARK_MODES:
            raise RuntimeError(f"Unsupported WATERMARK_MODE '{self.watermark_mode}'")
        if self.archive_video_policy not in VIDEO_POLICIES:
            raise RuntimeError(
                f"Unsupported ARCHIVE_VIDEO_POLICY '{self.archive_video_policy}'")
        if not 0.0 <= self.watermark_opacity <= 1.0:
            raise RuntimeError("WATERMARK_OPACITY must be between 0 and 1")
        if self.archive_concurrency < 1:
            raise RuntimeError("ARCHIVE_CONCURRENCY must be at least 1")

    @property
    def archive_size_limit_bytes(self) -> int:
        return self.archive_size_limit_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        if os.getenv("TESTING") != "1":
            load_dotenv(".env")

        return cls(
            database_url=_require("DATABASE_URL"),
            secret_key=_require("SECRET_KEY"),
            s3_bucket_name=_require("S3_BUCKET_NAME"),
            aws_region=os.getenv("AWS_REGION"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            s3_endpoint_url=os.getenv("S3_ENDPOINT_URL"),
            root_folder_id=os.getenv("ROOT_FOLDER_ID", ""),
            token_lifetime_days=int(os.getenv("TOKEN_LIFETIME_DAYS", "30")),
            admin_token_expire_minutes=int(os.getenv("ADMIN_TOKEN_EXPIRE_MINUTES", "60")),
            admin_email=os.getenv("ADMIN_EMAIL"),
            admin_password=os.getenv("ADMIN_PASSWORD"),
            watermark_logo_path=os.getenv(
                "WATERMARK_LOGO_PATH", os.path.join("static", "watermark", "logo.png")),
            watermark_mode=os.getenv("WATERMARK_MODE", "center-cover").lower(),
            watermark_tile_count=int(os.getenv("WATERMARK_TILE_COUNT", "5")),
            watermark_opacity=float(os.getenv("WATERMARK_OPACITY", "0.3")),
            watermark_quality=int(os.getenv("WATERMARK_QUALITY", "80")),
            ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg"),
            archive_concurrency=int(os.getenv("ARCHIVE_CONCURRENCY", "3")),
            archive_size_limit_mb=int(os.getenv("ARCHIVE_SIZE_LIMIT_MB", "50")),
            archive_video_policy=os.getenv("ARCHIVE_VIDEO_POLICY", "transcode").lower(),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "300")),
            allowed_origins=_origins(
                os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
