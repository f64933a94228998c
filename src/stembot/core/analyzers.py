"""Specialised analysis reports for research papers and experimental data."""

import logging
from typing import Optional, Tuple

from .models import (
    DataQuality,
    ExperimentalDataAnalysis,
    ExperimentalDesign,
    MethodologyCritique,
    NoveltyAssessment,
    ResearchMethodology,
    ResearchPaperAnalysis,
    StatisticalSignificance,
)
from .parsing import request_report

logger = logging.getLogger(__name__)

RESEARCH_PROMPT = """Analyze this research paper and provide detailed insights. Return JSON with this structure:
{
  "researchQuestions": ["question1", "question2"],
  "methodology": {
    "type": "experimental/theoretical/survey/etc",
    "description": "detailed description",
    "strengths": ["strength1", "strength2"],
    "limitations": ["limitation1", "limitation2"]
  },
  "keyFindings": [
    {
      "statement": "finding statement",
      "significance": "high/medium/low",
      "evidence": "supporting evidence"
    }
  ],
  "novelty": {
    "score": 8,
    "justification": "explanation of novelty",
    "gaps": ["gap1", "gap2"]
  },
  "methodologyCritique": {
    "score": 7,
    "issues": ["issue1", "issue2"],
    "suggestions": ["suggestion1", "suggestion2"]
  },
  "literatureGaps": ["gap1", "gap2"],
  "futureWork": ["direction1", "direction2"]
}

Research paper text:
"""

EXPERIMENTAL_PROMPT = """Analyze this experimental data document and provide insights. Return JSON with this structure:
{
  "dataQuality": {
    "score": 8,
    "issues": ["issue1", "issue2"],
    "recommendations": ["rec1", "rec2"]
  },
  "statisticalSignificance": {
    "tests": [
      {
        "type": "t-test",
        "pValue": 0.03,
        "significant": true,
        "interpretation": "significant difference found"
      }
    ],
    "overall": true,
    "confidence": 95
  },
  "experimentalDesign": {
    "type": "controlled experiment",
    "controls": ["control1", "control2"],
    "variables": [
      {
        "name": "temperature",
        "type": "independent",
        "description": "experimental temperature",
        "range": "20-80 C"
      }
    ],
    "sampleSize": 100,
    "critique": ["critique1", "critique2"]
  },
  "dataPatterns": [
    {
      "description": "pattern description",
      "confidence": 85,
      "implications": ["implication1", "implication2"]
    }
  ],
  "hypotheses": [
    {
      "statement": "hypothesis statement",
      "rationale": "reasoning",
      "testability": 8,
      "significance": "high"
    }
  ]
}

Experimental data text:
"""


def fallback_research_analysis() -> ResearchPaperAnalysis:
    """Zero-value report used whenever the research analysis cannot be obtained."""
    return ResearchPaperAnalysis(
        research_questions=[
            "Analysis could not be completed - please check the text-understanding service connection"
        ],
        methodology=ResearchMethodology(
            type="unknown",
            description="Unable to analyze methodology",
        ),
        key_findings=[],
        novelty=NoveltyAssessment(score=0, justification="Analysis incomplete"),
        methodology_critique=MethodologyCritique(score=0),
    )


def fallback_experimental_analysis() -> ExperimentalDataAnalysis:
    """Zero-value report used whenever the experimental analysis cannot be obtained."""
    return ExperimentalDataAnalysis(
        data_quality=DataQuality(
            score=0,
            issues=["Analysis could not be completed"],
            recommendations=["Check the text-understanding service connection and try again"],
        ),
        statistical_significance=StatisticalSignificance(tests=[], overall=False, confidence=0),
        experimental_design=ExperimentalDesign(type="unknown", sample_size=0),
    )


class ResearchPaperAnalyzer:
    def __init__(self, text_service, model: Optional[str] = None, prefix_chars: int = 12000):
        self.text_service = text_service
        self.model = model
        self.prefix_chars = prefix_chars

    async def analyze(self, text: str) -> Tuple[ResearchPaperAnalysis, Optional[str]]:
        prompt = RESEARCH_PROMPT + text[:self.prefix_chars] + "..."
        result = await request_report(self.text_service, prompt, ResearchPaperAnalysis, self.model)
        if result.is_ok:
            return result.value, None

        logger.warning(f"Research analysis unavailable, using fallback: {result.error}")
        return fallback_research_analysis(), str(result.error)


class ExperimentalDataAnalyzer:
    def __init__(self, text_service, model: Optional[str] = None, prefix_chars: int = 12000):
        self.text_service = text_service
        self.model = model
        self.prefix_chars = prefix_chars

    async def analyze(self, text: str) -> Tuple[ExperimentalDataAnalysis, Optional[str]]:
        prompt = EXPERIMENTAL_PROMPT + text[:self.prefix_chars] + "..."
        result = await request_report(self.text_service, prompt, ExperimentalDataAnalysis, self.model)
        if result.is_ok:
            return result.value, None

        logger.warning(f"Experimental analysis unavailable, using fallback: {result.error}")
        return fallback_experimental_analysis(), str(result.error)
