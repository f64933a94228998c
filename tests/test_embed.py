"""Tests for embedding generation."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from conftest import DIMENSIONS, FakeEmbeddingBackend, unit
from stembot.core.config import EmbeddingConfig
from stembot.core.embed import EmbeddingGenerator, OpenAIEmbeddingBackend, is_zero_vector
from stembot.core.errors import EmbeddingError
from stembot.core.models import DocumentStructure


class BrokenBackend:
    model = "broken"

    async def embed(self, texts):
        raise RuntimeError("backend exploded")


class SlowBackend:
    model = "slow"

    async def embed(self, texts):
        await asyncio.sleep(5)
        return [[1.0] * DIMENSIONS for _ in texts]


class TestEmbeddingGenerator:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n\t ", "short", "long text " * 5000])
    async def test_vectors_have_declared_dimension(self, text):
        generator = EmbeddingGenerator(FakeEmbeddingBackend(), dimensions=DIMENSIONS)
        embeddings, reason = await generator.generate(text, DocumentStructure())
        assert reason is None
        for vector in (embeddings.summary, embeddings.methodology, embeddings.conclusions, embeddings.full_text):
            assert len(vector) == DIMENSIONS

    @pytest.mark.asyncio
    async def test_empty_segments_do_not_call_backend(self):
        backend = FakeEmbeddingBackend()
        generator = EmbeddingGenerator(backend, dimensions=DIMENSIONS)
        embeddings, _ = await generator.generate("   ", DocumentStructure())
        assert backend.calls == []
        assert is_zero_vector(embeddings.summary)

    @pytest.mark.asyncio
    async def test_segments_come_from_structure(self):
        backend = FakeEmbeddingBackend({"ABSTRACT": unit(1.0), "METHOD": unit(0.0, 1.0)})
        generator = EmbeddingGenerator(backend, dimensions=DIMENSIONS)
        structure = DocumentStructure(abstract="ABSTRACT text", methodology="METHOD text")
        embeddings, _ = await generator.generate("body", structure)
        assert embeddings.summary == unit(1.0)
        assert embeddings.methodology == unit(0.0, 1.0)
        assert is_zero_vector(embeddings.conclusions)
        assert is_zero_vector(embeddings.full_text)
        assert sorted(backend.calls) == ["ABSTRACT text", "METHOD text"]

    @pytest.mark.asyncio
    async def test_summary_falls_back_to_text_prefix(self):
        backend = FakeEmbeddingBackend()
        generator = EmbeddingGenerator(backend, dimensions=DIMENSIONS, summary_prefix_chars=10)
        await generator.generate("abcdefghijKLMNOP", DocumentStructure())
        assert backend.calls == ["abcdefghij"]

    @pytest.mark.asyncio
    async def test_full_text_embedding_is_opt_in(self):
        backend = FakeEmbeddingBackend()
        generator = EmbeddingGenerator(backend, dimensions=DIMENSIONS, embed_full_text=True, full_text_prefix_chars=8000)
        embeddings, _ = await generator.generate("z" * 9000, DocumentStructure())
        assert not is_zero_vector(embeddings.full_text)
        assert "z" * 8000 in backend.calls

    @pytest.mark.asyncio
    async def test_wrong_dimension_gives_empty_vectors(self):
        generator = EmbeddingGenerator(FakeEmbeddingBackend(dimensions=5), dimensions=DIMENSIONS)
        embeddings, reason = await generator.generate("some text", DocumentStructure())
        assert reason
        assert embeddings.is_empty()

    @pytest.mark.asyncio
    async def test_backend_failure_gives_empty_vectors(self):
        generator = EmbeddingGenerator(BrokenBackend(), dimensions=DIMENSIONS)
        embeddings, reason = await generator.generate("some text", DocumentStructure())
        assert "backend exploded" in reason
        assert embeddings.is_empty()

    @pytest.mark.asyncio
    async def test_timeout_gives_empty_vectors(self):
        generator = EmbeddingGenerator(SlowBackend(), dimensions=DIMENSIONS, timeout=0.05)
        embeddings, reason = await generator.generate("some text", DocumentStructure())
        assert "timed out" in reason
        assert embeddings.is_empty()

    @pytest.mark.asyncio
    async def test_empty_query_raises(self):
        generator = EmbeddingGenerator(FakeEmbeddingBackend(), dimensions=DIMENSIONS)
        with pytest.raises(EmbeddingError):
            await generator.embed_query("  ")


@pytest.mark.asyncio
async def test_openai_backend_requests_configured_dimensions():
    client = SimpleNamespace(embeddings=SimpleNamespace(create=AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1] * 384)])
    )))
    backend = OpenAIEmbeddingBackend(EmbeddingConfig(dimensions=384), client=client)

    vectors = await backend.embed(["hello"])

    assert len(vectors[0]) == 384
    kwargs = client.embeddings.create.call_args.kwargs
    assert kwargs["dimensions"] == 384
    assert kwargs["model"] == "text-embedding-3-small"


def test_is_zero_vector():
    assert is_zero_vector([])
    assert is_zero_vector([0.0, 0.0])
    assert not is_zero_vector([0.0, 0.2])
