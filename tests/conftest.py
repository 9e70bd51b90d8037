import os

os.environ.setdefault("API_SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from typing import Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, create_engine  # noqa: E402

from medscribe.config import AIProvider  # noqa: E402
from medscribe.core.exceptions import ProviderConfigurationError, StorageWriteError  # noqa: E402
from medscribe.core.logging import AuditLogger  # noqa: E402
from medscribe.core.security import security_manager  # noqa: E402
from medscribe.database import get_db_session, init_db  # noqa: E402
from medscribe.main import app, get_audit_logger, get_provider_registry, get_storage  # noqa: E402
from medscribe.services.providers import AIProviderClient  # noqa: E402
from medscribe.services.storage_service import StorageClient  # noqa: E402

USER_ID = "user-123"

STRUCTURED_REPLY = (
    'noise-prefix {"subjetivo":"a","objetivo":"b","examenFisico":"c",'
    '"impresionDiagnostica":"d","plan":"e","analisisDelCaso":"f"} noise-suffix'
)


class FakeProvider(AIProviderClient):
    """Provider double that records every call."""

    def __init__(self, provider: AIProvider, transcript: str = "", reply: str = "", error: Exception = None):
        self.provider = provider
        self.transcript = transcript
        self.reply = reply
        self.error = error
        self.transcribe_calls: List[dict] = []
        self.complete_calls: List[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.transcribe_calls) + len(self.complete_calls)

    async def transcribe(self, audio: bytes, content_type: str, instruction: str) -> str:
        self.transcribe_calls.append({"audio": audio, "content_type": content_type, "instruction": instruction})
        if self.error:
            raise self.error
        return self.transcript

    async def complete(self, instruction: str, content: str) -> str:
        self.complete_calls.append({"instruction": instruction, "content": content})
        if self.error:
            raise self.error
        return self.reply


class FakeRegistry:
    def __init__(self, providers: Optional[Dict[AIProvider, FakeProvider]] = None):
        self.providers = providers or {}

    def get(self, provider: AIProvider) -> FakeProvider:
        provider = AIProvider(provider)
        if provider not in self.providers:
            raise ProviderConfigurationError(provider.value)
        return self.providers[provider]

    def is_configured(self, provider: AIProvider) -> bool:
        return AIProvider(provider) in self.providers


class FakeStorage(StorageClient):
    def __init__(self, fail_upload: bool = False):
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.fail_upload = fail_upload

    def upload_file(self, object_name: str, data: bytes, content_type: str) -> None:
        if self.fail_upload or object_name in self.objects:
            raise StorageWriteError(object_name)
        self.objects[object_name] = data

    def remove_file(self, object_name: str) -> None:
        self.removed.append(object_name)
        self.objects.pop(object_name, None)

    def exists(self, object_name: str) -> bool:
        return object_name in self.objects


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def gemini():
    return FakeProvider(AIProvider.GEMINI, transcript="Paciente refiere cefalea.", reply=STRUCTURED_REPLY)


@pytest.fixture
def registry(gemini):
    return FakeRegistry({AIProvider.GEMINI: gemini})


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def audit(engine):
    return AuditLogger(engine_factory=lambda: engine)


@pytest.fixture
def client(engine, registry, storage, audit):
    def override_session():
        with Session(engine) as db_session:
            yield db_session

    app.dependency_overrides[get_provider_registry] = lambda: registry
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_audit_logger] = lambda: audit
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = security_manager.create_access_token({"sub": USER_ID})
    return {"Authorization": f"Bearer {token}"}
