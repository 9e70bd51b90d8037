from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class AudioRecording(SQLModel, table=True):
    __tablename__ = "audio_recordings"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    consultation_id: Optional[str] = Field(default=None, max_length=255)
    file_path: str
    file_size: Optional[int] = None
    duration: Optional[float] = None
    transcription: Optional[str] = None
    transcription_status: Optional[str] = Field(default="pending", max_length=32)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    deleted_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column(nullable=True))


class AuditLogEntry(SQLModel, table=True):
    """Append-only record of one AI or storage action."""

    __tablename__ = "app_usage_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    action: str = Field(max_length=64)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
