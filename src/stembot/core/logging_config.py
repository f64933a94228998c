"""Structured logging configuration for the document pipeline."""

import logging
from typing import Dict, Any, List

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog for the pipeline.

    Stage modules log through stdlib `logging`; the orchestrator, relationship
    engine and checkpoint store emit structured audit events (document_processed,
    stage_degraded, relationships_discovered, stage_checkpoint_saved) that
    record how each document reached its terminal status. JSON output suits log
    shipping; the console renderer is the CLI default.
    """

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """
    Logger for one pipeline component (orchestrator, relationships, ...).

    Every event carries `component` and `audit=True` so degraded stages and
    discovered links can be filtered out of the general log stream.
    """
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_document_processed(
    logger: structlog.BoundLogger,
    analysis_id: str,
    filename: str,
    status: str,
    document_type: str,
    pages: int,
    degraded_stages: List[str],
    relationships: int,
    processing_time_ms: float
) -> None:
    """Log the terminal outcome of one pipeline run."""
    logger.info(
        "document_processed",
        analysis_id=analysis_id,
        filename=filename,
        status=status,
        document_type=document_type,
        pages=pages,
        degraded_stages=degraded_stages,
        relationships=relationships,
        processing_time_ms=processing_time_ms,
        event_type="document_processing"
    )


def log_stage_degraded(
    logger: structlog.BoundLogger,
    analysis_id: str,
    stage: str,
    reason: str
) -> None:
    """Log a stage that fell back to its default output."""
    logger.warning(
        "stage_degraded",
        analysis_id=analysis_id,
        stage=stage,
        reason=reason,
        event_type="stage_degradation"
    )


def log_relationships_discovered(
    logger: structlog.BoundLogger,
    analysis_id: str,
    candidates: int,
    relationships: int,
    type_counts: Dict[str, int],
    threshold: float,
    execution_time_ms: float,
    filters_applied: Dict[str, Any] = None
) -> None:
    """Log relationship discovery with the query that produced it."""
    logger.info(
        "relationships_discovered",
        analysis_id=analysis_id,
        candidates=candidates,
        relationships=relationships,
        type_counts=type_counts,
        threshold=threshold,
        execution_time_ms=execution_time_ms,
        filters_applied=filters_applied or {},
        event_type="relationship_discovery"
    )
