"""
HTTP client for the MedScribe AI API

Used on the recording side to hand a finalized artifact to the service:
upload, transcribe, then structure. Each call is a single request; errors are
raised as :class:`MedScribeClientError` carrying the service's error code.
"""

from typing import Any, Dict, Optional

import httpx

from medscribe.config import AIProvider
from medscribe.core.logging import get_logger
from medscribe.recorder.controller import RecordingController
from medscribe.recorder.state import AudioArtifact, PCM_CONTENT_TYPE
from medscribe.services.audio_processor import encode_audio

logger = get_logger(__name__)


class MedScribeClientError(Exception):
    """Raised when the service answers with an error body."""

    def __init__(self, status_code: int, error: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.details = details
        super().__init__(f"{error} ({status_code}): {message}")

    @property
    def retryable(self) -> bool:
        """Parse and upstream failures may succeed when the user re-runs the action."""
        return self.error in ("unparseable_structure", "upstream_provider_error")


class MedScribeClient:
    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._http = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "MedScribeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def upload_audio(
        self,
        audio: bytes,
        file_name: str = "recording.webm",
        consultation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {"audioBlob": encode_audio(audio), "fileName": file_name}
        if consultation_id:
            payload["consultationId"] = consultation_id
        return self._post("/v1/audio", payload)

    def transcribe(
        self,
        audio: bytes,
        provider: AIProvider = AIProvider.GEMINI,
        recording_ref: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {"audio": encode_audio(audio), "provider": AIProvider(provider).value}
        if recording_ref:
            payload["recordingRef"] = recording_ref
        if content_type:
            payload["contentType"] = content_type
        return self._post("/v1/transcribe", payload)

    def structure(self, transcription: str, provider: AIProvider = AIProvider.GEMINI) -> Dict[str, Any]:
        return self._post("/v1/structure", {
            "transcription": transcription,
            "provider": AIProvider(provider).value,
        })

    def analyze_symptoms(self, symptoms: str, provider: AIProvider = AIProvider.GEMINI, **context) -> Dict[str, Any]:
        return self._post("/v1/symptom-analysis", {
            "symptoms": symptoms,
            "provider": AIProvider(provider).value,
            **context,
        })

    def generate_plan(self, provider: AIProvider = AIProvider.GEMINI, **clinical) -> Dict[str, Any]:
        return self._post("/v1/treatment-plan", {"provider": AIProvider(provider).value, **clinical})

    def process_artifact(
        self,
        artifact: AudioArtifact,
        provider: AIProvider = AIProvider.GEMINI,
        consultation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Upload, transcribe and structure one finished recording."""
        if artifact.content_type == PCM_CONTENT_TYPE:
            audio, file_name, content_type = artifact.to_wav(), "recording.wav", "audio/wav"
        else:
            audio, file_name, content_type = artifact.data, "recording.webm", artifact.content_type

        upload = self.upload_audio(audio, file_name=file_name, consultation_id=consultation_id)
        transcript = self.transcribe(
            audio,
            provider=provider,
            recording_ref=upload["recordingId"],
            content_type=content_type,
        )
        result = {"recording": upload, "transcription": transcript["transcription"], "structured": None}
        if transcript["transcription"]:
            result["structured"] = self.structure(transcript["transcription"], provider)["structured"]
        else:
            logger.warning(f"Empty transcript for recording {upload['recordingId']}, skipping structuring")
        return result

    def attach(
        self,
        controller: RecordingController,
        provider: AIProvider = AIProvider.GEMINI,
        consultation_id: Optional[str] = None,
        on_result=None,
    ):
        """Processes every artifact ``controller`` finalizes. Returns the registered listener."""

        def listener(artifact: AudioArtifact) -> None:
            if artifact.is_empty:
                logger.warning("Ignoring empty recording")
                return
            result = self.process_artifact(artifact, provider=provider, consultation_id=consultation_id)
            if on_result:
                on_result(result)

        controller.add_listener(listener)
        return listener

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._http.post(path, json=payload)
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if "error" in body:
            raise MedScribeClientError(response.status_code, body["error"], body.get("message", ""), body.get("details"))
        raise MedScribeClientError(response.status_code, "http_error", str(body.get("detail", response.text)))
