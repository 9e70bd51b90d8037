"""
MedScribe AI - FastAPI Main Application
"""

import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Depends, status, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.responses import Response

from medscribe.config import settings, AIProvider
from medscribe.core.exceptions import MedScribeError
from medscribe.core.logging import setup_logging, get_logger, audit_logger, AuditLogger
from medscribe.core.security import get_current_user, security_manager
from medscribe.database import get_db_session, get_engine, init_db
from medscribe.models.requests import (
    TranscribeRequest, StructureRequest, SymptomAnalysisRequest,
    TreatmentPlanRequest, UploadAudioRequest,
)
from medscribe.models.responses import (
    TranscriptionResult, StructureResponse, SymptomAnalysisResponse,
    TreatmentPlanResponse, UploadAudioResponse, HealthCheckResponse,
    ErrorResponse, RateLimitResponse,
)
from medscribe.services.audio_processor import AudioProcessor
from medscribe.services.llm_service import LLMService
from medscribe.services.providers import ProviderRegistry, provider_registry
from medscribe.services.storage_service import (
    AudioStorageService, StorageClient, get_minio_storage, mark_transcribed,
)
from medscribe.services.stt_service import STTService

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# Prometheus metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration')
ai_call_duration = Histogram('ai_pipeline_duration_seconds', 'AI pipeline duration', ['operation', 'provider'])

# Rate limiter
limiter = Limiter(key_func=get_remote_address)
RATE_LIMIT = f"{settings.rate_limit_requests} per {settings.rate_limit_window} second"

audio_processor = AudioProcessor()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# --- Dependencies ---

def get_provider_registry() -> ProviderRegistry:
    return provider_registry


def get_storage() -> StorageClient:
    return get_minio_storage()


def get_audit_logger() -> AuditLogger:
    return audit_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("🚀 MedScribe AI starting...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"API Version: {settings.api_version}")
    if not settings.api_secret_key:
        logger.error("API_SECRET_KEY not configured; every authenticated request will be rejected")
    init_db(get_engine())

    yield

    logger.info("🛑 MedScribe AI shutting down...")


app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
    debug=settings.debug,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Rate limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    return response


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Request tracking and Prometheus metrics"""

    start_time = time.time()
    request_id = security_manager.generate_request_id()

    request.state.request_id = request_id
    request.state.start_time = start_time

    response = await call_next(request)

    duration = time.time() - start_time
    request_count.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()
    request_duration.observe(duration)

    audit_logger.log_api_request(
        request_id=request_id,
        endpoint=request.url.path,
        method=request.method,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        status_code=response.status_code,
        duration_ms=int(duration * 1000),
    )

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Processing-Time"] = f"{duration:.3f}s"
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _finish(
    request: Request,
    background_tasks: BackgroundTasks,
    audit: AuditLogger,
    user_info: Dict[str, Any],
    operation: str,
    action: str,
    provider: Optional[AIProvider],
    details: Dict[str, Any],
):
    """Records metrics and schedules the audit row once the response is ready."""
    processing_time_ms = int((time.time() - request.state.start_time) * 1000)
    provider_name = provider.value if provider else "none"
    ai_call_duration.labels(operation=operation, provider=provider_name).observe(processing_time_ms / 1000)
    audit.log_ai_invocation(
        request_id=_request_id(request),
        operation=operation,
        provider=provider_name,
        processing_time_ms=processing_time_ms,
        user_id=user_info["sub"],
    )
    background_tasks.add_task(audit.record, user_info["sub"], action, details)


# --- Health ---

@app.get("/health", response_model=HealthCheckResponse)
async def health_check(registry: ProviderRegistry = Depends(get_provider_registry)):
    """Service health check"""
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=settings.api_version,
        providers={provider.value: registry.is_configured(provider) for provider in AIProvider},
    )


@app.get("/ready")
async def readiness_check(db_session: Session = Depends(get_db_session)):
    """Returns 200 when the database answers, otherwise 503."""
    try:
        db_session.connection().execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "details": {"database": str(e)}},
        )
    return {"status": "ready", "version": settings.api_version}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics"""
    if not settings.enable_metrics:
        raise HTTPException(status_code=404, detail="Metrics disabled")

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --- AI pipelines ---

@app.post(
    "/v1/transcribe",
    response_model=TranscriptionResult,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def transcribe_audio(
    request: Request,
    body: TranscribeRequest,
    background_tasks: BackgroundTasks,
    user_info: dict = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_provider_registry),
    db_session: Session = Depends(get_db_session),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Transcribes base64 audio with the selected provider."""
    audio_data = audio_processor.decode_payload(body.audio)

    result = await STTService(registry).transcribe(audio_data, body.provider, body.content_type)

    if body.recording_ref:
        mark_transcribed(db_session, user_info["sub"], body.recording_ref, result.transcription)

    _finish(
        request, background_tasks, audit, user_info,
        operation="transcribe",
        action="audio_transcribed",
        provider=result.provider,
        details={
            "provider": result.provider.value,
            "recording_id": body.recording_ref,
            "transcription_length": len(result.transcription),
        },
    )
    return result


@app.post(
    "/v1/structure",
    response_model=StructureResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def structure_consultation(
    request: Request,
    body: StructureRequest,
    background_tasks: BackgroundTasks,
    user_info: dict = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_provider_registry),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Structures a transcript into the six-section consultation note."""
    structured = await LLMService(registry).structure(body.transcription, body.provider)

    _finish(
        request, background_tasks, audit, user_info,
        operation="structure",
        action="consultation_structured",
        provider=body.provider,
        details={"provider": body.provider.value, "transcription_length": len(body.transcription)},
    )
    return StructureResponse(structured=structured, provider=body.provider)


@app.post(
    "/v1/symptom-analysis",
    response_model=SymptomAnalysisResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def analyze_symptoms(
    request: Request,
    body: SymptomAnalysisRequest,
    background_tasks: BackgroundTasks,
    user_info: dict = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_provider_registry),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Differential diagnoses, red flags and suggested workup for the given symptoms."""
    analysis, provided = await LLMService(registry).analyze_symptoms(body)

    _finish(
        request, background_tasks, audit, user_info,
        operation="symptom_analysis",
        action="symptom_analysis_generated",
        provider=body.provider,
        details={"provider": body.provider.value, "patient_info_provided": provided},
    )
    return SymptomAnalysisResponse(analysis=analysis, provider=body.provider)


@app.post(
    "/v1/treatment-plan",
    response_model=TreatmentPlanResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def generate_plan(
    request: Request,
    body: TreatmentPlanRequest,
    background_tasks: BackgroundTasks,
    user_info: dict = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_provider_registry),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Treatment plan from symptoms, assessment or a diagnosis summary."""
    plan, provided = await LLMService(registry).generate_plan(body)

    _finish(
        request, background_tasks, audit, user_info,
        operation="treatment_plan",
        action="treatment_plan_generated",
        provider=body.provider,
        details={"provider": body.provider.value, "clinical_info_provided": provided},
    )
    return TreatmentPlanResponse(plan=plan, provider=body.provider)


# --- Storage ---

@app.post(
    "/v1/audio",
    response_model=UploadAudioResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
@limiter.limit(RATE_LIMIT)
async def upload_audio(
    request: Request,
    body: UploadAudioRequest,
    background_tasks: BackgroundTasks,
    user_info: dict = Depends(get_current_user),
    storage: StorageClient = Depends(get_storage),
    db_session: Session = Depends(get_db_session),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Stores a recording and creates its pending-transcription record."""
    audio_data = audio_processor.decode_payload(body.audio_blob)

    recording = AudioStorageService(storage).upload_audio(
        db_session,
        user_id=user_info["sub"],
        audio_data=audio_data,
        file_name=body.file_name,
        consultation_id=body.consultation_id,
    )

    _finish(
        request, background_tasks, audit, user_info,
        operation="upload_audio",
        action="audio_uploaded",
        provider=None,
        details={
            "recording_id": str(recording.id),
            "file_size": recording.file_size,
            "consultation_id": body.consultation_id,
        },
    )
    return UploadAudioResponse(recording_id=str(recording.id), file_path=recording.file_path)


# --- Error handlers ---

def _error_response(request: Request, status_code: int, error: str, message: str, details=None, headers=None):
    request_id = _request_id(request)
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id, **(headers or {})},
    )


@app.exception_handler(MedScribeError)
async def medscribe_error_handler(request: Request, exc: MedScribeError):
    """Maps the service error taxonomy onto HTTP responses."""
    audit_logger.log_error(
        request_id=_request_id(request),
        error_type=exc.error,
        error_message=exc.message,
        endpoint=request.url.path,
    )
    return _error_response(request, exc.status_code, exc.error, exc.message, exc.details, exc.headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit error handler"""

    response = RateLimitResponse(
        message="Too many requests. Please try again later.",
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
        timestamp=datetime.now(timezone.utc)
    )

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=response.model_dump(mode="json"),
        headers={"Retry-After": str(settings.rate_limit_window)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""

    request_id = _request_id(request)
    logger.error(f"Unhandled error in request {request_id}: {exc}")
    logger.error(f"Stacktrace: {traceback.format_exc()}")

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_server_error",
        "An unexpected error occurred",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "medscribe.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development"
    )
