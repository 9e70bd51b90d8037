"""
Speech-to-Text Service
Forwards consultation audio to the selected provider and returns plain text.
"""

from typing import Optional

from medscribe.config import AIProvider, settings
from medscribe.models.responses import TranscriptionResult
from medscribe.core.logging import get_logger
from medscribe.services.audio_processor import AudioProcessor
from medscribe.services.providers import ProviderRegistry, provider_registry

logger = get_logger(__name__)

LANGUAGE_NAMES = {
    "es": "Spanish", "en": "English", "de": "German", "fr": "French",
    "it": "Italian", "pt": "Portuguese",
}


def build_transcription_instruction(language: str) -> str:
    language_name = LANGUAGE_NAMES.get(language.lower(), "Spanish")
    return (
        f"Transcribe this medical audio recording in {language_name}. "
        "Return only the transcribed text, no additional commentary."
    )


class STTService:
    """Single-shot transcription through the selected provider."""

    def __init__(self, registry: ProviderRegistry = provider_registry, language: str = None):
        self.registry = registry
        self.language = language or settings.transcription_language
        self.audio_processor = AudioProcessor()

    async def transcribe(
        self,
        audio_data: bytes,
        provider: AIProvider,
        content_type: Optional[str] = None,
    ) -> TranscriptionResult:
        """
        Transcribes ``audio_data`` with ``provider``.

        Missing credentials and upstream HTTP failures propagate unchanged.
        An empty transcript is returned as a valid result.
        """
        client = self.registry.get(provider)
        content_type = content_type or self.audio_processor.detect_content_type(audio_data)

        logger.info(f"Using {client.provider.value} for transcription ({len(audio_data)} bytes, {content_type})")
        text = await client.transcribe(
            audio_data,
            content_type=content_type,
            instruction=build_transcription_instruction(self.language),
        )
        text = text.strip()

        if not text:
            logger.warning(f"{client.provider.value} returned an empty transcript")
        else:
            logger.info(f"Transcription successful: {len(text)} characters")

        return TranscriptionResult(transcription=text, provider=client.provider)
