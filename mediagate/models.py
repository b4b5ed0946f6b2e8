import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from mediagate.database import Base


def _uuid() -> str:
    return uuid.uuid4().hex


class User(Base):
    """A token holder, identified by email. Not a login principal."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    message = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)

    tokens = relationship(
        "AccessToken",
        back_populates="owner",
        cascade="all, delete-orphan",
        order_by="AccessToken.id",
    )


class AccessToken(Base):
    __tablename__ = "access_tokens"
    # one record per holder and file; an expired record is replaced, never duplicated
    __table_args__ = (UniqueConstraint("user_id", "file_id", name="uq_access_tokens_user_file"),)

    id = Column(Integer, primary_key=True, index=True)
    token = Column(Text, unique=True, nullable=False)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    file_id = Column(String, nullable=False, index=True)
    file_name = Column(String, nullable=True)
    file_type = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    owner = relationship("User", back_populates="tokens")


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
