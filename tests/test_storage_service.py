from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from minio.error import S3Error
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select
from urllib3.exceptions import ProtocolError

from conftest import USER_ID, FakeStorage
from medscribe.core.exceptions import StorageWriteError
from medscribe.core.security import DataEncryption
from medscribe.models.db import AudioRecording
from medscribe.services.storage_service import (
    AudioStorageService, MinioStorage, build_object_name, mark_transcribed,
)

WEBM = b"\x1a\x45\xdf\xa3" + b"\x00" * 16


def s3_error(code: str) -> S3Error:
    return S3Error(
        code=code, message="message", resource="resource",
        request_id="request-id", host_id="host-id", response=MagicMock(),
    )


class FailingCommitSession:
    """Session double whose commit fails like a lost database connection."""

    def __init__(self):
        self.rolled_back = False

    def add(self, instance) -> None:
        pass

    def commit(self) -> None:
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    def refresh(self, instance) -> None:
        pass

    def rollback(self) -> None:
        self.rolled_back = True


def test_build_object_name_uses_user_prefix_and_safe_timestamp() -> None:
    name = build_object_name("u1", "recording.webm", now=datetime(2025, 3, 4, 10, 15, 30, 123000))
    assert name == "u1/2025-03-04T10-15-30-123Z-recording.webm"


def test_upload_creates_pending_record(engine) -> None:
    storage = FakeStorage()
    service = AudioStorageService(storage, encryption=DataEncryption(None))

    with Session(engine) as db_session:
        recording = service.upload_audio(db_session, USER_ID, WEBM, "visit.webm", consultation_id="c-9")
        recording_id = recording.id

    assert storage.objects[recording.file_path] == WEBM
    with Session(engine) as db_session:
        stored = db_session.get(AudioRecording, recording_id)
    assert stored.user_id == USER_ID
    assert stored.file_size == len(WEBM)
    assert stored.transcription_status == "pending"


def test_upload_encrypts_object_when_key_configured(engine) -> None:
    from cryptography.fernet import Fernet

    key = Fernet.generate_key().decode()
    storage = FakeStorage()
    encryption = DataEncryption(key)

    with Session(engine) as db_session:
        recording = AudioStorageService(storage, encryption=encryption).upload_audio(db_session, USER_ID, WEBM)

    stored = storage.objects[recording.file_path]
    assert stored != WEBM
    assert encryption.decrypt_data(stored) == WEBM


def test_failed_record_insert_removes_stored_object() -> None:
    storage = FakeStorage()
    db_session = FailingCommitSession()
    service = AudioStorageService(storage, encryption=DataEncryption(None))

    with pytest.raises(StorageWriteError) as exc_info:
        service.upload_audio(db_session, USER_ID, WEBM)

    assert db_session.rolled_back
    assert storage.removed == [exc_info.value.object_name]
    assert storage.objects == {}


def test_failed_object_write_never_touches_database() -> None:
    db_session = MagicMock()
    service = AudioStorageService(FakeStorage(fail_upload=True), encryption=DataEncryption(None))

    with pytest.raises(StorageWriteError):
        service.upload_audio(db_session, USER_ID, WEBM)

    db_session.add.assert_not_called()
    db_session.commit.assert_not_called()


def test_mark_transcribed_only_touches_callers_recording(engine) -> None:
    with Session(engine) as db_session:
        recording = AudioRecording(user_id="someone-else", file_path="someone-else/a.webm")
        db_session.add(recording)
        db_session.commit()
        recording_id = str(recording.id)

        assert mark_transcribed(db_session, USER_ID, recording_id, "texto") is False
        assert mark_transcribed(db_session, USER_ID, "not-a-uuid", "texto") is False
        assert mark_transcribed(db_session, "someone-else", recording_id, "texto") is True

    with Session(engine) as db_session:
        stored = db_session.exec(select(AudioRecording)).one()
    assert stored.transcription == "texto"
    assert stored.transcription_status == "completed"


# --- MinIO adapter ---

def test_minio_upload_refuses_to_overwrite() -> None:
    client = MagicMock()
    storage = MinioStorage(client, "bucket")

    with pytest.raises(StorageWriteError):
        storage.upload_file("u1/a.webm", b"data", "audio/webm")

    client.put_object.assert_not_called()


def test_minio_upload_puts_new_object() -> None:
    client = MagicMock()
    client.stat_object.side_effect = s3_error("NoSuchKey")
    storage = MinioStorage(client, "bucket")

    storage.upload_file("u1/a.webm", b"data", "audio/webm")

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["bucket_name"] == "bucket"
    assert kwargs["object_name"] == "u1/a.webm"
    assert kwargs["length"] == 4
    assert kwargs["content_type"] == "audio/webm"


def test_minio_s3_error_maps_to_storage_write_error() -> None:
    client = MagicMock()
    client.stat_object.side_effect = s3_error("NoSuchKey")
    client.put_object.side_effect = s3_error("AccessDenied")

    with pytest.raises(StorageWriteError) as exc_info:
        MinioStorage(client, "bucket").upload_file("u1/a.webm", b"data", "audio/webm")

    assert isinstance(exc_info.value.cause, S3Error)


def test_minio_missing_bucket_maps_to_storage_write_error() -> None:
    client = MagicMock()
    client.stat_object.side_effect = s3_error("NoSuchBucket")

    with pytest.raises(StorageWriteError) as exc_info:
        MinioStorage(client, "bucket").upload_file("u1/a.webm", b"data", "audio/webm")

    assert exc_info.value.cause.code == "NoSuchBucket"
    client.put_object.assert_not_called()


def test_minio_connection_failure_maps_to_storage_write_error() -> None:
    client = MagicMock()
    client.stat_object.side_effect = ProtocolError("Connection aborted.")

    with pytest.raises(StorageWriteError):
        MinioStorage(client, "bucket").upload_file("u1/a.webm", b"data", "audio/webm")


def test_ensure_bucket_exists_creates_missing_bucket() -> None:
    client = MagicMock()
    client.bucket_exists.return_value = False

    MinioStorage(client, "medscribe-audio").ensure_bucket_exists()

    client.make_bucket.assert_called_once_with(bucket_name="medscribe-audio")


def test_ensure_bucket_exists_leaves_existing_bucket() -> None:
    client = MagicMock()
    client.bucket_exists.return_value = True

    MinioStorage(client, "medscribe-audio").ensure_bucket_exists()

    client.make_bucket.assert_not_called()


def test_ensure_bucket_exists_unreachable_server() -> None:
    client = MagicMock()
    client.bucket_exists.side_effect = ProtocolError("Connection refused")

    with pytest.raises(StorageWriteError):
        MinioStorage(client, "medscribe-audio").ensure_bucket_exists()


class UnreachableRemoveStorage(FakeStorage):
    def remove_file(self, object_name: str) -> None:
        raise ProtocolError("Connection aborted.")


def test_failed_cleanup_keeps_original_insert_error() -> None:
    service = AudioStorageService(UnreachableRemoveStorage(), encryption=DataEncryption(None))

    with pytest.raises(StorageWriteError) as exc_info:
        service.upload_audio(FailingCommitSession(), USER_ID, WEBM)

    assert isinstance(exc_info.value.cause, OperationalError)


# --- Timestamps ---

def test_inserted_rows_carry_utc_timestamps(engine) -> None:
    before = datetime.now(timezone.utc)
    with Session(engine) as db_session:
        recording = AudioStorageService(FakeStorage(), encryption=DataEncryption(None)).upload_audio(
            db_session, USER_ID, WEBM,
        )
        recording_id = recording.id

    with Session(engine) as db_session:
        stored = db_session.get(AudioRecording, recording_id)
        created_at, deleted_at = stored.created_at, stored.deleted_at
        assert mark_transcribed(db_session, USER_ID, str(recording_id), "texto") is True
        updated_at = db_session.get(AudioRecording, recording_id).updated_at

    for value in (created_at, updated_at):
        as_utc = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        assert before - timedelta(seconds=5) <= as_utc <= datetime.now(timezone.utc) + timedelta(seconds=5)
    assert deleted_at is None


def test_build_object_name_normalizes_aware_timestamps_to_utc() -> None:
    now = datetime(2025, 3, 4, 12, 15, 30, 123000, tzinfo=timezone(timedelta(hours=2)))
    assert build_object_name("u1", "a.webm", now=now) == "u1/2025-03-04T10-15-30-123Z-a.webm"
