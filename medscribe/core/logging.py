"""
Structured logging setup for MedScribe AI
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session

from medscribe.config import settings
from medscribe.database import get_engine
from medscribe.models.db import AuditLogEntry


def setup_logging():
    """Configures structlog"""

    timestamper = structlog.processors.TimeStamper(fmt="ISO")

    processors = [
        structlog.processors.add_log_level,
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.environment == "development":
        # Development: Colored console output
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True)
        ])
    else:
        # Production: JSON output
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """Returns a configured logger"""
    return structlog.get_logger(name or __name__)


class AuditLogger:
    """
    Audit channel for AI and storage actions.

    Log events go to structlog synchronously. Usage rows are appended to
    ``app_usage_logs`` by :meth:`record`, which the API schedules as a
    background task once the response is ready. A failed append is logged
    here and never reaches the caller.
    """

    def __init__(self, engine_factory: Optional[Callable[[], Engine]] = None):
        self.logger = get_logger("audit")
        self._engine_factory = engine_factory

    def record(self, user_id: str, action: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """Persists one audit row (best effort). Returns whether it was written."""
        if not settings.audit_log_enabled or self._engine_factory is None:
            return False

        entry = AuditLogEntry(user_id=user_id, action=action, details=details or {})
        try:
            with Session(self._engine_factory()) as db_session:
                db_session.add(entry)
                db_session.commit()
        except Exception as e:
            self.logger.error(
                "audit_write_failed",
                user_id=user_id,
                action=action,
                error_message=str(e),
                exc_info=True,
            )
            return False

        self.logger.info("audit_recorded", user_id=user_id, action=action)
        return True

    def log_api_request(
        self,
        request_id: str,
        endpoint: str,
        method: str,
        user_id: str = None,
        user_agent: str = None,
        ip_address: str = None,
        **kwargs
    ):
        """Logs an API request for auditing"""
        self.logger.info(
            "api_request",
            request_id=request_id,
            endpoint=endpoint,
            method=method,
            user_id=user_id,
            user_agent=user_agent,
            ip_address=ip_address,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **kwargs
        )

    def log_ai_invocation(
        self,
        request_id: str,
        operation: str,
        provider: str,
        processing_time_ms: int,
        **kwargs
    ):
        """Logs a pipeline invocation"""
        self.logger.info(
            "ai_invocation",
            request_id=request_id,
            operation=operation,
            provider=provider,
            processing_time_ms=processing_time_ms,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **kwargs
        )

    def log_external_api_call(
        self,
        service: str,
        endpoint: str,
        response_status: int,
        response_time_ms: int,
        **kwargs
    ):
        """Logs a call to an external API"""
        self.logger.info(
            "external_api_call",
            service=service,
            endpoint=endpoint,
            response_status=response_status,
            response_time_ms=response_time_ms,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **kwargs
        )

    def log_error(
        self,
        request_id: str,
        error_type: str,
        error_message: str,
        **kwargs
    ):
        """Logs an error event"""
        self.logger.error(
            "error_event",
            request_id=request_id,
            error_type=error_type,
            error_message=error_message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            **kwargs
        )


# Global audit logger instance
audit_logger = AuditLogger(engine_factory=get_engine)
