"""
Pydantic Models for API Responses
"""

from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field

from medscribe.config import AIProvider
from medscribe.models.clinical import (
    WireModel, StructuredConsultation, SymptomAnalysis, TreatmentPlan
)


class TranscriptionResult(WireModel):
    """Result of a transcription call"""
    transcription: str = Field(description="Transcribed text (may be empty)")
    provider: AIProvider = Field(description="Provider that served the request")
    success: bool = True


class StructureResponse(WireModel):
    structured: StructuredConsultation
    provider: AIProvider
    success: bool = True


class SymptomAnalysisResponse(WireModel):
    analysis: SymptomAnalysis
    provider: AIProvider
    success: bool = True


class TreatmentPlanResponse(WireModel):
    plan: TreatmentPlan
    provider: AIProvider
    success: bool = True


class UploadAudioResponse(WireModel):
    recording_id: str = Field(description="ID of the created recording record")
    file_path: str = Field(description="Object path in the audio bucket")
    success: bool = True


class HealthCheckResponse(BaseModel):
    """Health Check Response"""
    status: str = Field(description="Service status (healthy/unhealthy)")
    timestamp: datetime = Field(description="Time of the check")
    version: str = Field(description="Service version")
    providers: Dict[str, bool] = Field(default_factory=dict, description="Configured AI providers")


class ErrorResponse(BaseModel):
    """Standard error body"""
    success: bool = False
    error: str = Field(description="Machine readable error code")
    message: str = Field(description="Human readable message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")
    request_id: Optional[str] = Field(default=None, description="Request ID for debugging")
    timestamp: datetime = Field(description="Time of the error")


class RateLimitResponse(BaseModel):
    """Rate Limit Exceeded Response"""
    error: str = Field(default="rate_limit_exceeded")
    message: str = Field(description="Rate limit message")
    limit: int = Field(description="Request limit")
    window: int = Field(description="Window in seconds")
    timestamp: datetime = Field(description="Time of the error")
