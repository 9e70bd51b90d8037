"""
Pydantic Models for API Requests
"""

from typing import Optional
from pydantic import AliasChoices, Field

from medscribe.config import AIProvider, settings
from medscribe.models.clinical import WireModel


class TranscribeRequest(WireModel):
    """Request Model for audio transcription"""
    audio: str = Field(description="Base64 encoded audio")
    provider: AIProvider = Field(default=settings.default_provider)
    recording_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("recordingRef", "recordingId", "recording_ref"),
        description="Recording to update with the transcription",
    )
    content_type: Optional[str] = Field(default=None, description="MIME type of the audio, detected if omitted")


class StructureRequest(WireModel):
    """Request Model for SOAP structuring of a transcript"""
    transcription: str = Field(description="Plain consultation transcript")
    provider: AIProvider = Field(default=settings.default_provider)


class SymptomAnalysisRequest(WireModel):
    """Request Model for symptom analysis"""
    symptoms: Optional[str] = Field(default=None, description="Presenting symptoms (required)")
    patient_age: Optional[int] = Field(default=None, ge=0, le=150)
    patient_gender: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    provider: AIProvider = Field(default=settings.default_provider)


class TreatmentPlanRequest(WireModel):
    """Request Model for treatment plan generation"""
    symptoms: Optional[str] = None
    assessment: Optional[str] = None
    diagnosis_summary: Optional[str] = None
    patient_age: Optional[int] = Field(default=None, ge=0, le=150)
    patient_gender: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    allergies: Optional[str] = None
    provider: AIProvider = Field(default=settings.default_provider)


class UploadAudioRequest(WireModel):
    """Request Model for audio upload"""
    audio_blob: str = Field(description="Base64 encoded audio")
    file_name: str = Field(default="recording.webm")
    consultation_id: Optional[str] = None
