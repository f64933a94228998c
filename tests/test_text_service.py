"""Tests for the text-understanding service clients."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import ollama
import pytest

from stembot.core.config import LLMConfig, Settings
from stembot.core.errors import AnalysisServiceError, AnalysisServiceTimeout
from stembot.core.text_service import (
    OllamaTextService,
    OpenAITextService,
    _normalize_host,
    create_text_service,
)


def ollama_client(**generate_kwargs):
    client = MagicMock()
    client.generate = AsyncMock(**generate_kwargs)
    return client


class TestOllamaTextService:

    @pytest.mark.asyncio
    async def test_generate_returns_response_text(self):
        client = ollama_client(return_value=SimpleNamespace(response='{"title": "x"}'))
        service = OllamaTextService(LLMConfig(), client=client)

        text = await service.generate("prompt", json_format=True)

        assert text == '{"title": "x"}'
        kwargs = client.generate.call_args.kwargs
        assert kwargs["model"] == "llama3.2:3b"
        assert kwargs["format"] == "json"
        assert kwargs["options"] == {"temperature": 0.0}

    @pytest.mark.asyncio
    async def test_plain_prompt_has_no_json_format(self):
        client = ollama_client(return_value=SimpleNamespace(response="research_paper"))
        service = OllamaTextService(LLMConfig(), client=client)
        await service.generate("classify", "other-model")
        kwargs = client.generate.call_args.kwargs
        assert "format" not in kwargs
        assert kwargs["model"] == "other-model"

    @pytest.mark.asyncio
    async def test_slow_service_times_out(self):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        client = MagicMock()
        client.generate = slow
        service = OllamaTextService(LLMConfig(timeout=0.05), client=client)

        with pytest.raises(AnalysisServiceTimeout):
            await service.generate("prompt")

    @pytest.mark.asyncio
    async def test_empty_response_is_an_error(self):
        client = ollama_client(return_value=SimpleNamespace(response="   "))
        service = OllamaTextService(LLMConfig(), client=client)
        with pytest.raises(AnalysisServiceError):
            await service.generate("prompt")

    @pytest.mark.asyncio
    async def test_response_error_is_not_retried(self):
        client = ollama_client(side_effect=ollama.ResponseError("model not found", 404))
        service = OllamaTextService(LLMConfig(retry_attempts=3), client=client)
        with pytest.raises(AnalysisServiceError, match="model not found"):
            await service.generate("prompt")
        assert client.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self):
        client = ollama_client(side_effect=[
            ConnectionError("refused"),
            SimpleNamespace(response="ok"),
        ])
        service = OllamaTextService(LLMConfig(retry_attempts=2), client=client)
        assert await service.generate("prompt") == "ok"
        assert client.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_dropped_connection_is_a_service_error(self):
        client = ollama_client(side_effect=httpx.RemoteProtocolError("Server disconnected without sending a response."))
        service = OllamaTextService(LLMConfig(retry_attempts=1), client=client)
        with pytest.raises(AnalysisServiceError, match="Ollama unreachable"):
            await service.generate("prompt")

    @pytest.mark.asyncio
    async def test_read_timeout_is_a_timeout(self):
        client = ollama_client(side_effect=httpx.ReadTimeout("timed out"))
        service = OllamaTextService(LLMConfig(retry_attempts=3), client=client)
        with pytest.raises(AnalysisServiceTimeout):
            await service.generate("prompt")
        assert client.generate.await_count == 1


@pytest.mark.asyncio
async def test_openai_service_requests_json_object():
    message = SimpleNamespace(content='{"a": 1}')
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)])
    ))))
    service = OpenAITextService(LLMConfig(provider="openai", model="gpt-4o-mini"), client=client)

    assert await service.generate("prompt", json_format=True) == '{"a": 1}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][-1] == {"role": "user", "content": "prompt"}


@pytest.mark.parametrize("url,expected", [
    ("http://localhost:11434", "http://localhost:11434"),
    ("http://localhost:11434/", "http://localhost:11434"),
    ("http://localhost:11434/api", "http://localhost:11434"),
    ("http://gpu-box:11434/v1", "http://gpu-box:11434"),
])
def test_normalize_host(url, expected):
    assert _normalize_host(url) == expected


def test_create_text_service():
    assert isinstance(create_text_service(Settings()), OllamaTextService)

    settings = Settings()
    settings.llm.provider = "telepathy"
    with pytest.raises(ValueError):
        create_text_service(settings)
