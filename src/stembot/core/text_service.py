"""Text-understanding service clients (Ollama and OpenAI chat)."""

import asyncio
import logging
from typing import Optional, Protocol

import httpx
import ollama
import openai
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import LLMConfig, Settings
from .errors import AnalysisServiceError, AnalysisServiceTimeout

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = (
    "Respond with valid JSON only. Do not include markdown code blocks, "
    "no explanatory text, and no text outside the JSON object."
)


class TextService(Protocol):
    """Anything that turns a prompt into response text."""

    async def generate(
        self, prompt: str, model: Optional[str] = None, *, json_format: bool = False
    ) -> str:
        ...


class _TransientServiceError(AnalysisServiceError):
    """Connection-level failure worth retrying."""
    pass


def _normalize_host(base_url: str) -> str:
    """Ollama's client wants scheme://host:port without trailing paths."""
    host = base_url.rstrip("/")
    for suffix in ("/api", "/v1"):
        if host.endswith(suffix):
            host = host[: -len(suffix)]
    return host


class BaseTextService:
    """Timeout and retry handling shared by the concrete clients."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.model = config.model
        self.timeout = config.timeout

    async def _call(self, prompt: str, model: str, json_format: bool) -> str:
        raise NotImplementedError

    async def generate(
        self, prompt: str, model: Optional[str] = None, *, json_format: bool = False
    ) -> str:
        """
        Send one prompt and return the raw response text.

        Raises:
            AnalysisServiceTimeout: if the call exceeds the configured timeout
            AnalysisServiceError: on any other service failure
        """
        model = model or self.model
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.retry_attempts)),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(_TransientServiceError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._timed_call(prompt, model, json_format)
        except _TransientServiceError as e:
            raise AnalysisServiceError(str(e), original_error=e.original_error) from e

    async def _timed_call(self, prompt: str, model: str, json_format: bool) -> str:
        try:
            text = await asyncio.wait_for(
                self._call(prompt, model, json_format), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Text service call timed out after {self.timeout}s")
            raise AnalysisServiceTimeout(
                f"Text service call timed out after {self.timeout}s", original_error=e
            ) from e

        if not text or not text.strip():
            raise AnalysisServiceError("Text service returned an empty response")
        return text


class OllamaTextService(BaseTextService):
    """Client for a local Ollama server using /api/generate."""

    def __init__(self, config: LLMConfig, client: Optional[ollama.AsyncClient] = None):
        super().__init__(config)
        host = _normalize_host(config.base_url)
        self.client = client or ollama.AsyncClient(host=host, timeout=config.timeout)
        logger.info(f"Initialized Ollama text service with model {self.model} at {host}")

    async def _call(self, prompt: str, model: str, json_format: bool) -> str:
        kwargs = {
            "model": model,
            "prompt": prompt,
            "options": {"temperature": self.config.temperature},
        }
        if json_format:
            kwargs["format"] = "json"
            kwargs["system"] = JSON_INSTRUCTION

        try:
            response = await self.client.generate(**kwargs)
        except httpx.TimeoutException as e:
            raise AnalysisServiceTimeout(f"Ollama request timed out: {e}", original_error=e) from e
        except (ConnectionError, httpx.TransportError) as e:
            raise _TransientServiceError(f"Ollama unreachable: {e}", original_error=e) from e
        except ollama.ResponseError as e:
            raise AnalysisServiceError(f"Ollama error: {e.error}", original_error=e) from e

        return response.response


class OpenAITextService(BaseTextService):
    """Client for OpenAI chat completions."""

    def __init__(self, config: LLMConfig, client: Optional[openai.AsyncOpenAI] = None):
        super().__init__(config)
        if client is None:
            if not config.api_key:
                raise ValueError("OpenAI API key not found in environment variables")
            client = openai.AsyncOpenAI(api_key=config.api_key, timeout=config.timeout)
        self.client = client
        logger.info(f"Initialized OpenAI text service with model {self.model}")

    async def _call(self, prompt: str, model: str, json_format: bool) -> str:
        messages = []
        if json_format:
            messages.append({"role": "system", "content": JSON_INSTRUCTION})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": self.config.temperature,
        }
        if json_format:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as e:
            raise AnalysisServiceTimeout(f"OpenAI call timed out: {e}", original_error=e) from e
        except openai.APIConnectionError as e:
            raise _TransientServiceError(f"OpenAI unreachable: {e}", original_error=e) from e
        except openai.APIError as e:
            raise AnalysisServiceError(f"OpenAI error: {e}", original_error=e) from e

        return response.choices[0].message.content or ""


def create_text_service(settings: Settings) -> BaseTextService:
    """Build the configured text-understanding client."""
    provider = settings.llm.provider
    if provider == "ollama":
        return OllamaTextService(settings.llm)
    if provider == "openai":
        return OpenAITextService(settings.llm)
    raise ValueError(f"Unknown LLM provider: {provider}")
