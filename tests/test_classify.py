"""Tests for document classification."""

import pytest

from conftest import CLASSIFY, FakeTextService
from stembot.core.classify import DocumentClassifier, normalize_label
from stembot.core.errors import AnalysisServiceError, ClassificationAmbiguity
from stembot.core.models import DOCUMENT_TYPES


@pytest.mark.parametrize("answer,expected", [
    ("research_paper", "research_paper"),
    ("  Research_Paper\n", "research_paper"),
    ('"experimental data".', "experimental_data"),
    ("experimental-data", "experimental_data"),
    ("PROTOCOL", "protocol"),
    ("- review", "review"),
])
def test_normalize_label(answer, expected):
    assert normalize_label(answer) == expected


@pytest.mark.parametrize("answer", ["", "a research paper about rain", "thesis"])
def test_normalize_label_rejects_unknown(answer):
    with pytest.raises(ClassificationAmbiguity):
        normalize_label(answer)


class TestDocumentClassifier:

    @pytest.mark.asyncio
    async def test_known_label(self):
        classifier = DocumentClassifier(FakeTextService({CLASSIFY: "experimental_data"}))
        label, reason = await classifier.classify("text")
        assert label == "experimental_data"
        assert reason is None

    @pytest.mark.asyncio
    async def test_unknown_label_maps_to_other(self):
        classifier = DocumentClassifier(FakeTextService({CLASSIFY: "I think this is a thesis"}))
        label, reason = await classifier.classify("text")
        assert label == "other"
        assert reason

    @pytest.mark.asyncio
    async def test_service_failure_maps_to_other(self):
        classifier = DocumentClassifier(FakeTextService({CLASSIFY: AnalysisServiceError("down")}))
        label, _ = await classifier.classify("text")
        assert label == "other"

    @pytest.mark.asyncio
    async def test_identical_answers_give_identical_labels(self):
        service = FakeTextService({CLASSIFY: " Report "})
        classifier = DocumentClassifier(service)
        first, _ = await classifier.classify("same text")
        second, _ = await classifier.classify("same text")
        assert first == second == "report"
        assert first in DOCUMENT_TYPES

    @pytest.mark.asyncio
    async def test_prompt_is_bounded(self):
        service = FakeTextService({CLASSIFY: "other"})
        await DocumentClassifier(service, prefix_chars=2000).classify("y" * 5000)
        assert "y" * 2000 in service.calls[0]
        assert "y" * 2001 not in service.calls[0]
