"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Boolean, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base declarative class."""


class GenerationModel(Base):
    __tablename__ = "generations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    progress: Mapped[float | None] = mapped_column(Float)
    started_at: Mapped[int | None] = mapped_column(BigInteger)
    elapsed_seconds: Mapped[int | None] = mapped_column(Integer)
    error: Mapped[str | None] = mapped_column(Text)
    error_code: Mapped[str | None] = mapped_column(String(32))
    provider_task_id: Mapped[str | None] = mapped_column(String(256))
    provider_result_url: Mapped[str | None] = mapped_column(Text)
    reference_file_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    image_size: Mapped[str | None] = mapped_column(String(16))
    aspect_ratio: Mapped[str | None] = mapped_column(String(16))
    duration: Mapped[int | None] = mapped_column(Integer)
    video_size: Mapped[str | None] = mapped_column(String(16))
    output_file_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class FileModel(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(String(64), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    original_name: Mapped[str | None] = mapped_column(String(512))
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    persistent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    public_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class UserProviderModel(Base):
    __tablename__ = "user_provider"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider_host: Mapped[str] = mapped_column(String(512), nullable=False)
    api_key_enc: Mapped[str | None] = mapped_column(Text)
    provider_kind: Mapped[str | None] = mapped_column(String(16))
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class SettingsModel(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    image_timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=600)
    video_timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=600)
