"""Closed-label document classification."""

import logging
import re
from typing import Optional, Tuple

from .errors import AnalysisServiceError, ClassificationAmbiguity
from .models import DOCUMENT_TYPES

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "other"

CLASSIFY_PROMPT = """Classify this document type. Return only one of these categories:
- research_paper
- experimental_data
- review
- protocol
- report
- other

Document text (first {limit} characters):
{text}"""


def normalize_label(answer: str, labels=DOCUMENT_TYPES) -> str:
    """
    Map a free-text service answer onto one of the closed labels.

    Raises:
        ClassificationAmbiguity: if the answer is not one of the labels
    """
    label = (answer or "").strip().lower()
    label = label.strip(" \t\r\n\"'`.,;:!-*")
    label = re.sub(r"[\s\-]+", "_", label)
    if label in labels:
        return label
    raise ClassificationAmbiguity(f"Unrecognised label: {answer!r}")


class DocumentClassifier:
    def __init__(self, text_service, model: Optional[str] = None, prefix_chars: int = 2000):
        self.text_service = text_service
        self.model = model
        self.prefix_chars = prefix_chars

    async def classify(self, text: str) -> Tuple[str, Optional[str]]:
        """Return (label, degradation reason or None)."""
        prompt = CLASSIFY_PROMPT.format(limit=self.prefix_chars, text=text[:self.prefix_chars])
        try:
            answer = await self.text_service.generate(prompt, self.model)
            return normalize_label(answer), None
        except ClassificationAmbiguity as e:
            logger.info(f"Classification ambiguous, using '{DEFAULT_LABEL}': {e}")
            return DEFAULT_LABEL, str(e)
        except AnalysisServiceError as e:
            logger.warning(f"Classification failed, using '{DEFAULT_LABEL}': {e}")
            return DEFAULT_LABEL, str(e)
