"""
Generative-AI provider clients (Gemini, OpenAI)

Each provider exposes the same two primitives: speech-to-text and a
single-turn text completion. Pipelines pick a provider by ``AIProvider`` and
never branch on the provider themselves. Calls are single-shot: there is no
retry and no automatic fallback to the other provider.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI, APIConnectionError, APIStatusError

from medscribe.config import AIProvider, Settings, settings
from medscribe.core.exceptions import ProviderConfigurationError, UpstreamProviderError
from medscribe.core.logging import get_logger, audit_logger

logger = get_logger(__name__)


class AIProviderClient(ABC):
    """Uniform interface over one generative-AI provider."""

    provider: AIProvider

    @abstractmethod
    async def transcribe(self, audio: bytes, content_type: str, instruction: str) -> str:
        """Returns the plain-text transcript of ``audio``."""

    @abstractmethod
    async def complete(self, instruction: str, content: str) -> str:
        """Returns the provider's free-text reply to ``instruction`` applied to ``content``."""

    def _log_call(self, endpoint: str, started: float, response_status: int, **kwargs):
        audit_logger.log_external_api_call(
            service=self.provider.value,
            endpoint=endpoint,
            response_status=response_status,
            response_time_ms=int((time.time() - started) * 1000),
            **kwargs
        )


class GeminiProvider(AIProviderClient):
    """Google Gemini via the google-genai SDK."""

    provider = AIProvider.GEMINI

    def __init__(self, client: genai.Client, model_name: str, temperature: float, max_tokens: int):
        self._client = client
        self._model_name = model_name
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def transcribe(self, audio: bytes, content_type: str, instruction: str) -> str:
        contents = [
            instruction,
            genai_types.Part.from_bytes(data=audio, mime_type=content_type),
        ]
        return await self._generate("generateContent:transcribe", contents, config=None)

    async def complete(self, instruction: str, content: str) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=self._temperature,
            max_output_tokens=self._max_tokens,
        )
        return await self._generate("generateContent", f"{instruction}\n\n{content}", config=config)

    async def _generate(self, endpoint: str, contents, config) -> str:
        started = time.time()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model_name,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            self._log_call(endpoint, started, e.code or 0)
            logger.error(f"Gemini API error: {e}")
            raise UpstreamProviderError(self.provider.value, e.code, e.message or str(e)) from e
        except httpx.HTTPError as e:
            self._log_call(endpoint, started, 0)
            logger.error(f"Gemini API unreachable: {e}")
            raise UpstreamProviderError(self.provider.value, None, str(e)) from e

        self._log_call(endpoint, started, 200, model=self._model_name)
        return response.text or ""


class OpenAIProvider(AIProviderClient):
    """OpenAI: Whisper for speech-to-text, chat completions for text."""

    provider = AIProvider.OPENAI

    def __init__(
        self,
        client: AsyncOpenAI,
        chat_model: str,
        transcription_model: str,
        language: str,
        temperature: float,
        max_tokens: int,
    ):
        self._client = client
        self._chat_model = chat_model
        self._transcription_model = transcription_model
        self._language = language
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def transcribe(self, audio: bytes, content_type: str, instruction: str) -> str:
        # Whisper takes no free-form instruction; the language pins the output
        extension = content_type.split("/")[-1].split(";")[0] or "webm"
        started = time.time()
        try:
            transcription = await self._client.audio.transcriptions.create(
                model=self._transcription_model,
                file=(f"audio.{extension}", audio, content_type),
                language=self._language,
            )
        except (APIStatusError, APIConnectionError) as e:
            raise self._upstream_error("audio/transcriptions", started, e) from e

        self._log_call("audio/transcriptions", started, 200, model=self._transcription_model)
        return transcription.text or ""

    async def complete(self, instruction: str, content: str) -> str:
        started = time.time()
        try:
            completion = await self._client.chat.completions.create(
                model=self._chat_model,
                messages=[
                    {"role": "system", "content": instruction},
                    {"role": "user", "content": content},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except (APIStatusError, APIConnectionError) as e:
            raise self._upstream_error("chat/completions", started, e) from e

        self._log_call("chat/completions", started, 200, model=self._chat_model)
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    def _upstream_error(self, endpoint: str, started: float, error: Exception) -> UpstreamProviderError:
        if isinstance(error, APIStatusError):
            upstream_status = error.status_code
            body = error.body if error.body is not None else error.response.text
        else:
            upstream_status = None
            body = str(error)
        self._log_call(endpoint, started, upstream_status or 0)
        logger.error(f"OpenAI API error: {error}")
        return UpstreamProviderError(self.provider.value, upstream_status, body)


class ProviderRegistry:
    """Resolves ``AIProvider`` choices to configured clients."""

    def __init__(self, config: Settings = settings):
        self._config = config
        self._clients: Dict[AIProvider, AIProviderClient] = {}

    def get(self, provider: AIProvider) -> AIProviderClient:
        provider = AIProvider(provider)
        client = self._clients.get(provider)
        if client is None:
            client = self._build(provider)
            self._clients[provider] = client
        return client

    def is_configured(self, provider: AIProvider) -> bool:
        return bool(self._api_key(provider))

    def _api_key(self, provider: AIProvider) -> Optional[str]:
        if provider == AIProvider.GEMINI:
            return self._config.gemini_api_key
        return self._config.openai_api_key

    def _build(self, provider: AIProvider) -> AIProviderClient:
        api_key = self._api_key(provider)
        if not api_key:
            logger.error(f"Provider {provider.value} selected but no API key configured")
            raise ProviderConfigurationError(provider.value)

        if provider == AIProvider.GEMINI:
            return GeminiProvider(
                client=genai.Client(api_key=api_key),
                model_name=self._config.gemini_model,
                temperature=self._config.llm_temperature,
                max_tokens=self._config.llm_max_tokens,
            )
        return OpenAIProvider(
            client=AsyncOpenAI(api_key=api_key, max_retries=0),
            chat_model=self._config.openai_chat_model,
            transcription_model=self._config.openai_transcription_model,
            language=self._config.transcription_language,
            temperature=self._config.llm_temperature,
            max_tokens=self._config.llm_max_tokens,
        )


# Global provider registry
provider_registry = ProviderRegistry()
