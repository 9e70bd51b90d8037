import pytest

from conftest import FakeProvider, FakeRegistry
from medscribe.config import AIProvider, Settings
from medscribe.core.exceptions import ProviderConfigurationError, UpstreamProviderError
from medscribe.services.providers import ProviderRegistry
from medscribe.services.stt_service import STTService, build_transcription_instruction

WEBM_HEADER = b"\x1a\x45\xdf\xa3" + b"\x00" * 32


async def test_transcribe_returns_stripped_text_and_provider() -> None:
    provider = FakeProvider(AIProvider.GEMINI, transcript="  Paciente refiere cefalea.\n")
    service = STTService(FakeRegistry({AIProvider.GEMINI: provider}), language="es")

    result = await service.transcribe(WEBM_HEADER, AIProvider.GEMINI)

    assert result.transcription == "Paciente refiere cefalea."
    assert result.provider == AIProvider.GEMINI
    call = provider.transcribe_calls[0]
    assert call["content_type"] == "audio/webm"
    assert call["audio"] == WEBM_HEADER
    assert "Spanish" in call["instruction"]


async def test_explicit_content_type_is_forwarded() -> None:
    provider = FakeProvider(AIProvider.OPENAI, transcript="hola")
    service = STTService(FakeRegistry({AIProvider.OPENAI: provider}))

    await service.transcribe(b"RIFF....WAVE", AIProvider.OPENAI, content_type="audio/wav")

    assert provider.transcribe_calls[0]["content_type"] == "audio/wav"


async def test_empty_transcript_is_a_valid_result() -> None:
    provider = FakeProvider(AIProvider.GEMINI, transcript="   ")
    service = STTService(FakeRegistry({AIProvider.GEMINI: provider}))

    result = await service.transcribe(WEBM_HEADER, AIProvider.GEMINI)

    assert result.transcription == ""
    assert result.success is True


async def test_missing_api_key_fails_without_fallback() -> None:
    registry = ProviderRegistry(Settings(gemini_api_key=None, openai_api_key="sk-configured"))
    service = STTService(registry)

    with pytest.raises(ProviderConfigurationError) as exc_info:
        await service.transcribe(WEBM_HEADER, AIProvider.GEMINI)

    assert exc_info.value.details == {"provider": "gemini"}
    assert "GEMINI_API_KEY" in exc_info.value.message


async def test_upstream_error_propagates_unchanged() -> None:
    error = UpstreamProviderError("gemini", 503, "overloaded")
    provider = FakeProvider(AIProvider.GEMINI, error=error)
    service = STTService(FakeRegistry({AIProvider.GEMINI: provider}))

    with pytest.raises(UpstreamProviderError) as exc_info:
        await service.transcribe(WEBM_HEADER, AIProvider.GEMINI)

    assert exc_info.value is error
    assert provider.call_count == 1


def test_unknown_language_falls_back_to_spanish() -> None:
    assert "in English" in build_transcription_instruction("EN")
    assert "in Spanish" in build_transcription_instruction("xx")
