"""
Parsing of text-service output into validated pydantic models.

Service answers arrive as free text: sometimes fenced in markdown, sometimes
wrapped in a preamble. Everything that leaves this module is either a
validated model or a ParseError describing why it is not.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Generic, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import AnalysisServiceError, AnalysisServiceTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# ParseError kinds
NO_JSON = "no_json"
INVALID_JSON = "invalid_json"
SCHEMA = "schema"
SERVICE = "service"
TIMEOUT = "timeout"


@dataclass
class ParseError:
    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass
class ParseResult(Generic[T]):
    """Either a validated value or the error that prevented it."""
    value: Optional[T] = None
    error: Optional[ParseError] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def ok(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: str, message: str) -> "ParseResult[T]":
        return cls(error=ParseError(kind=kind, message=message))


def strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from text."""
    text = re.sub(r'^```(?:json|JSON)?\s*\n?', '', text, flags=re.MULTILINE)
    text = re.sub(r'\n?```\s*$', '', text, flags=re.MULTILINE)
    return text


def find_json_boundaries(text: str) -> Tuple[int, int]:
    """Start and end index of the outermost JSON object or array."""
    obj_start, obj_end = text.find('{'), text.rfind('}')
    arr_start, arr_end = text.find('['), text.rfind(']')

    if obj_start == -1 and arr_start == -1:
        return -1, -1
    if obj_start == -1:
        return arr_start, arr_end
    if arr_start == -1:
        return obj_start, obj_end
    if obj_start < arr_start:
        return obj_start, obj_end
    return arr_start, arr_end


def extract_json_string(text: str) -> Optional[str]:
    """Pull the JSON payload out of a service answer, or None."""
    text = strip_markdown_fences(text)
    start, end = find_json_boundaries(text)
    if start == -1 or end == -1 or end < start:
        return None
    return text[start:end + 1]


def parse_report(raw: str, model_cls: Type[T]) -> ParseResult[T]:
    """
    Validate a raw service answer against a pydantic schema.

    Args:
        raw: Response text from the text-understanding service
        model_cls: Schema the payload must satisfy

    Returns:
        ParseResult carrying the model or a ParseError
    """
    json_str = extract_json_string(raw or "")
    if json_str is None:
        return ParseResult.fail(NO_JSON, "No JSON object found in response")

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error: {e}")
        return ParseResult.fail(INVALID_JSON, str(e))

    try:
        return ParseResult.ok(model_cls.model_validate(data))
    except ValidationError as e:
        logger.warning(f"Schema validation failed for {model_cls.__name__}: {e.error_count()} errors")
        return ParseResult.fail(SCHEMA, str(e))


async def request_report(
    service,
    prompt: str,
    model_cls: Type[T],
    model: Optional[str] = None,
) -> ParseResult[T]:
    """Ask the service for JSON and parse it; service failures become ParseErrors."""
    try:
        raw = await service.generate(prompt, model, json_format=True)
    except AnalysisServiceTimeout as e:
        return ParseResult.fail(TIMEOUT, str(e))
    except AnalysisServiceError as e:
        return ParseResult.fail(SERVICE, str(e))
    return parse_report(raw, model_cls)
