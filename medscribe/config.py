"""
Central configuration for the MedScribe AI Service
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class AIProvider(str, Enum):
    GEMINI = "gemini"  # primary
    OPENAI = "openai"  # fallback, only on explicit request


class Settings(BaseSettings):
    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API Configuration
    api_title: str = Field(default="MedScribe AI API")
    api_description: str = Field(default="Consultation transcription and clinical assistance service")
    api_version: str = Field(default="1.0.0")
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)
    api_secret_key: Optional[str] = Field(default=None)  # JWT verification secret; required to serve requests

    # External Service APIs (missing keys only fail when the provider is selected)
    gemini_api_key: Optional[str] = Field(default=None)
    openai_api_key: Optional[str] = Field(default=None)
    default_provider: AIProvider = Field(default=AIProvider.GEMINI)

    # LLM Configuration
    gemini_model: str = Field(default="gemini-1.5-flash")
    openai_chat_model: str = Field(default="gpt-4o-mini")
    openai_transcription_model: str = Field(default="whisper-1")
    llm_temperature: float = Field(default=0.1)
    llm_max_tokens: int = Field(default=2048)
    transcription_language: str = Field(default="es")

    # Persistence
    database_url: str = Field(default="sqlite:///./medscribe.db")
    minio_endpoint: str = Field(default="localhost:9000")
    minio_access_key: str = Field(default="minioadmin")
    minio_secret_key: str = Field(default="minioadmin")
    minio_secure: bool = Field(default=False)
    audio_bucket: str = Field(default="medscribe-audio")
    default_audio_content_type: str = Field(default="audio/webm")
    data_encryption_key: Optional[str] = Field(default=None)
    audio_retention_hours: int = Field(default=48)  # enforced by the external cleanup job

    # Rate Limiting
    rate_limit_requests: int = Field(default=30)
    rate_limit_window: int = Field(default=60)  # seconds

    # CORS Configuration
    cors_origins: List[str] = Field(default=["*"])
    cors_allow_methods: List[str] = Field(default=["GET", "POST", "OPTIONS"])
    cors_allow_headers: List[str] = Field(
        default=["authorization", "x-client-info", "apikey", "content-type"]
    )

    # Security
    token_algorithm: str = Field(default="HS256")
    jwt_issuer: Optional[str] = Field(default=None)

    # Monitoring
    enable_metrics: bool = Field(default=True)

    # Audit Logging
    audit_log_enabled: bool = Field(default=True)

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
