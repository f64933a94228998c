"""Exception taxonomy for the document pipeline."""


class StembotError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


# Fatal: the record cannot proceed without text

class ExtractionError(StembotError):
    """Raised when text cannot be extracted from an upload."""
    pass


class UnsupportedFormatError(ExtractionError):
    """Raised when the declared MIME type has no extractor."""
    pass


# Recovered locally by each stage's fallback

class AnalysisServiceError(StembotError):
    """Raised when the text-understanding service fails or answers badly."""
    pass


class AnalysisServiceTimeout(AnalysisServiceError):
    """Raised when a text-understanding call exceeds its timeout."""
    pass


class ClassificationAmbiguity(StembotError):
    """Raised when a classifier answer falls outside the closed label set."""
    pass


class EmbeddingError(StembotError):
    """Raised when embedding generation fails or returns the wrong shape."""
    pass


class VectorStoreError(StembotError):
    """Raised when the vector store rejects an operation."""
    pass


class VectorStoreUnavailable(VectorStoreError):
    """Raised when the vector store cannot be reached or persisted."""
    pass


class StateTransitionError(StembotError):
    """Raised on an attempt to move a record out of a terminal status."""
    pass
