"""
Error taxonomy for the MedScribe AI Service.

Every error carries a machine readable ``error`` code and the HTTP status the
API layer answers with, so clients can tell a parse failure ("try again")
apart from an upstream or connectivity failure.
"""

from typing import Any, Dict, Optional

from fastapi import status


class MedScribeError(Exception):
    """Base class for all service errors."""

    error: str = "medscribe_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    headers: Optional[Dict[str, str]] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


# --- Configuration ---

class ProviderConfigurationError(MedScribeError):
    """Raised when the selected provider has no credentials configured."""

    error = "provider_not_configured"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider.upper()}_API_KEY not configured", {"provider": provider})


# --- Upstream ---

class UpstreamProviderError(MedScribeError):
    """Raised when an AI provider answers with an HTTP error."""

    error = "upstream_provider_error"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, provider: str, upstream_status: Optional[int], body: Any = None):
        self.provider = provider
        self.upstream_status = upstream_status
        self.body = body
        super().__init__(
            f"{provider} API error (status {upstream_status})",
            {"provider": provider, "upstream_status": upstream_status, "upstream_body": body},
        )


class UnparseableStructure(MedScribeError):
    """Raised when a provider reply holds no parseable JSON object."""

    error = "unparseable_structure"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "Could not parse structured response from provider"):
        super().__init__(message)


# --- Input validation ---

class InvalidRequestError(MedScribeError):
    error = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientClinicalInput(InvalidRequestError):
    """Raised before any provider call when no clinical context was supplied."""

    error = "insufficient_clinical_input"


class EmptyArtifact(InvalidRequestError):
    """Raised when an audio artifact is missing."""

    error = "empty_artifact"


# --- Authentication ---

class AuthenticationError(MedScribeError):
    """Raised when a request carries no valid bearer token."""

    error = "authentication_failed"
    status_code = status.HTTP_401_UNAUTHORIZED
    headers = {"WWW-Authenticate": "Bearer"}

    def __init__(self, message: str = "Invalid or missing authentication credentials"):
        super().__init__(message)


# --- Resources ---

class StorageWriteError(MedScribeError):
    """Raised when audio could not be persisted to storage or its record."""

    error = "storage_write_failed"

    def __init__(self, object_name: str, cause: Optional[Exception] = None):
        self.object_name = object_name
        self.cause = cause
        super().__init__(f"Failed to store audio '{object_name}'", {"file_path": object_name})


class DeviceUnavailable(MedScribeError):
    """Raised when the microphone cannot be opened or permission was denied."""

    error = "device_unavailable"

    def __init__(self, message: str = "Audio input device unavailable", cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class InvalidTransition(MedScribeError):
    """Raised when a recorder command is not valid in the current state."""

    error = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, command: str, state: str):
        self.command = command
        self.state = state
        super().__init__(f"Cannot {command} while {state}")
