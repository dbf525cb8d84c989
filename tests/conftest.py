"""
Shared in-memory collaborators for the document intelligence tests.
"""
from typing import Any, Dict, List, Optional

import pytest

from lendingiq.config import IntelligenceSettings
from lendingiq.intelligence.constants import ExtractionMethod
from lendingiq.intelligence.errors import (
    ExtractionUnavailableError,
    InferenceUnavailableError,
    NotFoundError,
    PersistenceError,
)
from lendingiq.intelligence.models import ApplicationRecord, Document, ExtractedField


class InMemoryStore:
    """DocumentStore backed by dicts."""

    def __init__(self):
        self.applications: Dict[str, ApplicationRecord] = {}
        self.documents: List[Document] = []
        self.saved: List[tuple] = []
        self.fail_saves = False
        self.fail_listing = False

    def add_application(self, application: ApplicationRecord) -> ApplicationRecord:
        self.applications[application.id] = application
        return application

    def add_document(self, document: Document) -> Document:
        self.documents.append(document)
        return document

    async def get_application(self, application_id: str) -> ApplicationRecord:
        if application_id not in self.applications:
            raise NotFoundError("Application", application_id)
        return self.applications[application_id]

    async def get_documents(self, application_id: str) -> List[Document]:
        if self.fail_listing:
            raise PersistenceError("document index unavailable")
        return [d for d in self.documents if d.application_id == application_id]

    async def get_document(self, document_id: str) -> Document:
        for document in self.documents:
            if document.id == document_id:
                return document
        raise NotFoundError("Document", document_id)

    async def save_analysis(self, document_id: str, key: str, blob: Dict[str, Any]) -> None:
        if self.fail_saves:
            raise PersistenceError("disk full")
        self.saved.append((document_id, key, blob))


class StaticTextExtractor:
    """Text per document id; unknown documents have no text."""

    def __init__(self):
        self.texts: Dict[str, str] = {}

    async def extract_text(self, document: Document) -> str:
        if document.id not in self.texts:
            raise ExtractionUnavailableError(document.id, "no text")
        return self.texts[document.id]


class StaticFieldExtractor:
    """Fields (or an exception to raise) per document id."""

    def __init__(self):
        self.fields: Dict[str, Any] = {}

    async def extract_fields(self, document: Document) -> List[ExtractedField]:
        result = self.fields.get(document.id, [])
        if isinstance(result, Exception):
            raise result
        return result


class ScriptedInference:
    """Inference client returning canned responses per task.

    Unscripted tasks fail with InferenceUnavailableError, like a disabled client.
    """

    def __init__(self):
        self.responses: Dict[str, Any] = {}
        self.calls: List[tuple] = []

    async def infer(self, task, payload, schema):
        self.calls.append((task, payload))
        response = self.responses.get(task)
        if response is None:
            raise InferenceUnavailableError(f"{task} not scripted")
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return schema.model_validate(response)
        return response

    def tasks(self) -> List[str]:
        return [task for task, _ in self.calls]


@pytest.fixture
def settings():
    """Default intelligence settings, independent of the environment."""
    return IntelligenceSettings()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def text_extractor():
    return StaticTextExtractor()


@pytest.fixture
def field_extractor():
    return StaticFieldExtractor()


@pytest.fixture
def inference():
    return ScriptedInference()


@pytest.fixture
def make_document():
    """Factory for documents attached to an application."""
    def _make(
        document_id: str,
        application_id: str = "app-1",
        file_name: Optional[str] = None,
        document_type: str = "other",
        **metadata,
    ) -> Document:
        return Document(
            id=document_id,
            application_id=application_id,
            file_name=file_name if file_name is not None else f"{document_id}.pdf",
            document_type=document_type,
            metadata=dict(metadata),
        )
    return _make


@pytest.fixture
def make_field():
    """Factory for extracted fields."""
    def _make(
        label: str,
        value: str,
        confidence: float = 0.7,
        method: ExtractionMethod = ExtractionMethod.PATTERN,
    ) -> ExtractedField:
        return ExtractedField(label=label, value=value, confidence=confidence, method=method)
    return _make
