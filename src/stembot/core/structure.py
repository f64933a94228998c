"""Document structure analysis: service extraction with a heuristic fallback."""

import logging
import re
from typing import List, Optional, Tuple

from .models import CamelModel, DocumentSection, DocumentStructure
from .parsing import request_report

logger = logging.getLogger(__name__)

STRUCTURE_PROMPT = """Analyze this document and extract its structure. Return a JSON object with the following format:
{
  "title": "document title",
  "abstract": "abstract text if present",
  "sections": [
    {
      "title": "section title",
      "content": "section content",
      "level": 1
    }
  ],
  "references": ["list of references if present"]
}

Document text:
"""

MAX_HEADING_LENGTH = 100

NUMBERED_HEADING = re.compile(r"^(\d{1,2}(?:\.\d{1,2})*)\.?\s+[A-Za-z]")
CAPS_HEADING = re.compile(r"^[A-Z][A-Z0-9\s\-:&,/]*[A-Z]$")
CANONICAL_HEADING = re.compile(
    r"^(abstract|introduction|methods?|methodology|results?|discussion|conclusions?|references)\s*:?$",
    re.IGNORECASE,
)


class StructureReport(CamelModel):
    """Shape the service is asked to return."""
    title: Optional[str] = None
    abstract: Optional[str] = None
    sections: List[DocumentSection]
    references: List[str] = []


def heading_level(line: str) -> Optional[int]:
    """Return the section level if the line looks like a heading, else None."""
    if len(line) >= MAX_HEADING_LENGTH:
        return None

    numbered = NUMBERED_HEADING.match(line)
    if numbered:
        return numbered.group(1).count(".") + 1

    if CAPS_HEADING.match(line) or CANONICAL_HEADING.match(line):
        return 1

    return None


def heuristic_structure(text: str) -> DocumentStructure:
    """
    Line-based structure used when the service cannot help.

    The first non-empty line becomes the title; every later line that looks
    like a heading becomes a section with empty content.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    structure = DocumentStructure()
    if not lines:
        return structure

    structure.title = lines[0]
    for line in lines[1:]:
        level = heading_level(line)
        if level is not None:
            structure.sections.append(DocumentSection(title=line, content="", level=level))

    return structure


def _section_text(sections: List[DocumentSection], keyword: str) -> Optional[str]:
    for section in sections:
        if keyword in section.title.lower() and section.content.strip():
            return section.content.strip()
    return None


def fill_canonical_fields(structure: DocumentStructure) -> DocumentStructure:
    """Copy methodology/conclusion text out of named sections when missing."""
    if not structure.methodology:
        structure.methodology = _section_text(structure.sections, "method")
    if not structure.conclusion:
        structure.conclusion = _section_text(structure.sections, "conclu")
    return structure


class StructureAnalyzer:
    def __init__(self, text_service, model: Optional[str] = None, prefix_chars: int = 8000):
        self.text_service = text_service
        self.model = model
        self.prefix_chars = prefix_chars

    async def analyze(self, text: str) -> Tuple[DocumentStructure, Optional[str]]:
        """
        Extract document structure.

        Returns:
            (structure, degradation reason or None when the service answered)
        """
        prompt = STRUCTURE_PROMPT + text[:self.prefix_chars] + "..."
        result = await request_report(self.text_service, prompt, StructureReport, self.model)

        if result.is_ok:
            report = result.value
            structure = DocumentStructure(
                title=report.title,
                abstract=report.abstract,
                sections=report.sections,
                references=report.references,
            )
            return fill_canonical_fields(structure), None

        logger.warning(f"Structure analysis fell back to heuristics: {result.error}")
        return fill_canonical_fields(heuristic_structure(text)), str(result.error)
