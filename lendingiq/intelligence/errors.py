"""
Error taxonomy for the document intelligence pipeline.
"""

from typing import Optional


class IntelligenceError(Exception):
    """Base class for pipeline errors."""


class NotFoundError(IntelligenceError):
    """An application or document does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ExtractionUnavailableError(IntelligenceError):
    """Text could not be extracted from a document."""

    def __init__(self, document_id: str, reason: Optional[str] = None):
        message = f"Could not extract text from document {document_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.document_id = document_id


class InferenceUnavailableError(IntelligenceError):
    """The inference capability failed or is disabled."""


class PersistenceError(IntelligenceError):
    """Writing an analysis back to the store failed."""
