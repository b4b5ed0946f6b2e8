"""
File-scoped access tokens.

A token is a signed JWT naming one file, and it is only honoured while a
matching ``AccessToken`` row exists. Deleting the rows revokes it.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from email_validator import EmailNotValidError, validate_email
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mediagate.errors import (
    ConflictError,
    ExpiredTokenError,
    InvalidTokenError,
    NotFoundError,
    RevokedTokenError,
    ScopeMismatchError,
    ValidationError,
)
from mediagate.models import AccessToken, User

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "email", "file_id", "file_type", "exp")


def _epoch(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp())


def _from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() + "Z" if moment else None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    file_id: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "success": True,
            "token": self.token,
            "fileId": self.file_id,
            "expiresAt": _iso(self.expires_at),
        }


@dataclass(frozen=True)
class VerifiedToken:
    subject_id: str
    name: str
    email: str
    file_id: str
    file_name: Optional[str]
    file_type: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "fileId": self.file_id,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "expiresAt": _iso(self.expires_at),
        }


def _record_dict(record: AccessToken) -> dict:
    return {
        "token": record.token,
        "fileId": record.file_id,
        "fileName": record.file_name,
        "fileType": record.file_type,
        "expiresAt": _iso(record.expires_at),
        "createdAt": _iso(record.created_at),
    }


class TokenService:
    def __init__(
        self,
        db: Session,
        storage,
        secret_key: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.storage = storage
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = lifetime
        self._clock = clock

    # ───── Issue ─────

    def issue(self, name: Optional[str], email: Optional[str], file_id: Optional[str],
              message: Optional[str] = None) -> IssuedToken:
        name = (name or "").strip()
        email = (email or "").strip()
        file_id = (file_id or "").strip()
        if not name or not email or not file_id:
            raise ValidationError("Name, email and fileId are required")
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email address: {exc}") from exc

        meta = self.storage.get_metadata(file_id)
        now = self._clock()

        user = self._get_or_create_user(name, email, message)
        try:
            existing = (
                self.db.query(AccessToken)
                .filter(AccessToken.user_id == user.id, AccessToken.file_id == file_id)
                .first()
            )
            if existing is not None:
                if now < existing.expires_at:
                    raise ConflictError("A token already exists for this file")
                self.db.delete(existing)
                self.db.flush()

            expires_at = (now + self.lifetime).replace(microsecond=0)
            claims = {
                "sub": user.id,
                "email": user.email,
                "file_id": file_id,
                "file_type": meta.kind.value,
                "iat": _epoch(now),
                "exp": _epoch(expires_at),
                "jti": uuid.uuid4().hex,
            }
            token = jwt.encode(claims, self.secret_key, algorithm=self.algorithm)
            self.db.add(
                AccessToken(
                    token=token,
                    user_id=user.id,
                    file_id=file_id,
                    file_name=meta.name,
                    file_type=meta.kind.value,
                    expires_at=expires_at,
                    created_at=now,
                )
            )
            self.db.commit()
        except ConflictError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            # a concurrent request inserted the same (user, file) pair first
            self.db.rollback()
            raise ConflictError("A token already exists for this file") from exc

        logger.info("Issued %s token for %s on %s", meta.kind.value, email, file_id)
        return IssuedToken(token=token, file_id=file_id, expires_at=expires_at)

    def _find_user(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def _get_or_create_user(self, name: str, email: str, message: Optional[str]) -> User:
        user = self._find_user(email)
        if user is not None:
            return user

        user = User(name=name, email=email, message=(message or "").strip())
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # a concurrent first request for this email created the holder
            self.db.rollback()
            user = self._find_user(email)
            if user is None:
                raise
        return user

    # ───── Verify ─────

    def decode(self, token: Optional[str]) -> dict:
        """Check signature, claim shape and expiry. No database access."""
        if not token:
            raise InvalidTokenError("Invalid token")
        try:
            claims = jwt.decode(
                token, self.secret_key, algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError("Invalid token") from exc

        for key in REQUIRED_CLAIMS:
            if key not in claims:
                raise InvalidTokenError("Malformed token")
        if not isinstance(claims["exp"], int) or not isinstance(claims["file_id"], str):
            raise InvalidTokenError("Malformed token")

        if self._clock() >= _from_epoch(claims["exp"]):
            raise ExpiredTokenError("Token has expired")
        return claims

    def verify(self, token: Optional[str], file_id: str) -> VerifiedToken:
        claims = self.decode(token)
        if claims["file_id"] != file_id:
            raise ScopeMismatchError("This token is not valid for the requested file")

        record = (
            self.db.query(AccessToken)
            .filter(AccessToken.token == token, AccessToken.file_id == file_id)
            .first()
        )
        if record is None:
            raise RevokedTokenError("Token not found or revoked")
        if self._clock() >= record.expires_at:
            raise ExpiredTokenError("Token has expired")

        return VerifiedToken(
            subject_id=record.user_id,
            name=record.owner.name,
            email=record.owner.email,
            file_id=record.file_id,
            file_name=record.file_name,
            file_type=record.file_type,
            expires_at=record.expires_at,
        )

    def describe(self, token: str) -> dict:
        claims = self.decode(token)
        record = (
            self.db.query(AccessToken)
            .filter(AccessToken.token == token, AccessToken.user_id == claims["sub"])
            .first()
        )
        if record is None:
            raise NotFoundError("Token not found")
        return {
            "valid": True,
            "user": {"name": record.owner.name, "email": record.owner.email},
            "file": {"id": record.file_id, "name": record.file_name, "type": record.file_type},
            "expiresAt": _iso(record.expires_at),
        }

    # ───── Lookup / revoke ─────

    def _records_for_file(self, file_id: str) -> List[AccessToken]:
        return (
            self.db.query(AccessToken)
            .filter(AccessToken.file_id == file_id)
            .order_by(AccessToken.id)
            .all()
        )

    def first_for_file(self, file_id: str) -> dict:
        records = self._records_for_file(file_id)
        if not records:
            raise NotFoundError("No token found for this file")
        return _record_dict(records[0])

    def list_for_file(self, file_id: str) -> List[dict]:
        records = self._records_for_file(file_id)
        if not records:
            raise NotFoundError("No token found for this file")
        return [
            {
                **_record_dict(record),
                "ownerName": record.owner.name,
                "ownerEmail": record.owner.email,
            }
            for record in records
        ]

    def revoke_for_file(self, file_id: str) -> int:
        count = (
            self.db.query(AccessToken)
            .filter(AccessToken.file_id == file_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Revoked %s token(s) for %s", count, file_id)
        return count
