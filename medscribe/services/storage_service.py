"""
Audio storage: object storage for recordings plus their database records
"""

import io
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from uuid import UUID

from minio import Minio
from minio.error import S3Error
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from urllib3.exceptions import HTTPError

from medscribe.config import settings
from medscribe.core.exceptions import StorageWriteError
from medscribe.core.logging import get_logger
from medscribe.core.security import DataEncryption, data_encryption
from medscribe.models.db import AudioRecording, utcnow
from medscribe.services.audio_processor import AudioProcessor

logger = get_logger(__name__)

# S3 error replies and transport failures (connection refused, timeouts)
STORAGE_ERRORS = (S3Error, HTTPError)


class StorageClient(ABC):
    """Object storage for recorded audio."""

    @abstractmethod
    def upload_file(self, object_name: str, data: bytes, content_type: str) -> None:
        """Stores ``data`` under ``object_name``; never overwrites an existing object."""

    @abstractmethod
    def remove_file(self, object_name: str) -> None:
        """Deletes ``object_name``."""

    @abstractmethod
    def exists(self, object_name: str) -> bool:
        """Reports whether ``object_name`` is stored."""


class MinioStorage(StorageClient):
    """Handles audio storage using MinIO."""

    def __init__(self, client: Minio, bucket_name: str):
        self._client = client
        self._bucket_name = bucket_name

    def ensure_bucket_exists(self) -> None:
        """Creates the audio bucket on first use."""
        try:
            if self._client.bucket_exists(bucket_name=self._bucket_name):
                return
            self._client.make_bucket(bucket_name=self._bucket_name)
        except STORAGE_ERRORS as e:
            logger.error(f"MinIO bucket {self._bucket_name} unavailable: {e}")
            raise StorageWriteError(self._bucket_name, e) from e
        logger.info(f"Bucket created: {self._bucket_name}")

    def upload_file(self, object_name: str, data: bytes, content_type: str) -> None:
        try:
            if self.exists(object_name):
                raise StorageWriteError(object_name)
            self._client.put_object(
                bucket_name=self._bucket_name,
                object_name=object_name,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except STORAGE_ERRORS as e:
            logger.error(f"MinIO upload failed for {object_name}: {e}")
            raise StorageWriteError(object_name, e) from e
        logger.info(f"File uploaded to MinIO: {object_name} ({len(data)} bytes)")

    def remove_file(self, object_name: str) -> None:
        self._client.remove_object(self._bucket_name, object_name)
        logger.info(f"Removed {object_name} from MinIO")

    def exists(self, object_name: str) -> bool:
        try:
            self._client.stat_object(self._bucket_name, object_name)
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject"):
                return False
            raise
        return True


def build_object_name(user_id: str, file_name: str, now: Optional[datetime] = None) -> str:
    """``{user_id}/{timestamp}-{file_name}`` with ':' and '.' of the timestamp replaced by '-'."""
    now = now or utcnow()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    timestamp = now.isoformat(timespec="milliseconds") + "Z"
    timestamp = timestamp.replace(":", "-").replace(".", "-")
    safe_name = file_name.replace("/", "_").strip() or "recording.webm"
    return f"{user_id}/{timestamp}-{safe_name}"


class AudioStorageService:
    """Upload pipeline: object write, then record insert, with compensation on failure."""

    def __init__(
        self,
        storage: StorageClient,
        encryption: DataEncryption = data_encryption,
        audio_processor: Optional[AudioProcessor] = None,
    ):
        self.storage = storage
        self.encryption = encryption
        self.audio_processor = audio_processor or AudioProcessor()

    def upload_audio(
        self,
        db_session: Session,
        user_id: str,
        audio_data: bytes,
        file_name: str = "recording.webm",
        consultation_id: Optional[str] = None,
    ) -> AudioRecording:
        content_type = self.audio_processor.detect_content_type(audio_data, file_name)
        metadata = self.audio_processor.extract_metadata(audio_data, content_type)
        object_name = build_object_name(user_id, file_name)

        self.storage.upload_file(object_name, self.encryption.encrypt_data(audio_data), content_type)

        recording = AudioRecording(
            user_id=user_id,
            consultation_id=consultation_id,
            file_path=object_name,
            file_size=len(audio_data),
            duration=metadata.get("duration_seconds"),
            transcription_status="pending",
        )
        try:
            db_session.add(recording)
            db_session.commit()
            db_session.refresh(recording)
        except SQLAlchemyError as e:
            db_session.rollback()
            logger.error(f"Database insert failed for {object_name}, removing stored object: {e}")
            self._remove_orphan(object_name)
            raise StorageWriteError(object_name, e) from e

        logger.info(f"Audio uploaded successfully: {recording.id}")
        return recording

    def _remove_orphan(self, object_name: str) -> None:
        try:
            self.storage.remove_file(object_name)
        except STORAGE_ERRORS as e:
            # Left for the retention job; the original insert error is what the caller sees
            logger.error(f"Failed to remove orphaned object {object_name}: {e}", exc_info=True)


def mark_transcribed(db_session: Session, user_id: str, recording_id: str, transcription: str) -> bool:
    """Stores a transcription on the caller's recording. Returns False when no such recording exists."""
    try:
        recording_uuid = UUID(str(recording_id))
    except ValueError:
        logger.warning(f"Ignoring malformed recording reference: {recording_id}")
        return False

    statement = select(AudioRecording).where(
        AudioRecording.id == recording_uuid,
        AudioRecording.user_id == user_id,
        AudioRecording.deleted_at.is_(None),
    )
    recording = db_session.exec(statement).first()
    if recording is None:
        logger.warning(f"Recording {recording_id} not found for user {user_id}")
        return False

    recording.transcription = transcription
    recording.transcription_status = "completed"
    recording.updated_at = utcnow()
    db_session.add(recording)
    db_session.commit()
    return True


@lru_cache
def get_minio_storage() -> MinioStorage:
    client = Minio(
        settings.minio_endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=settings.minio_secure,
    )
    storage = MinioStorage(client, settings.audio_bucket)
    storage.ensure_bucket_exists()
    return storage
