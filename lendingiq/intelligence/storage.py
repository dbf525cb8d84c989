"""
JSON storage for loan applications and their documents.

File structure:
    {base}/applications/{application_id}.json  - application record
    {base}/documents/{document_id}.json        - document record and metadata
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..config import DEFAULT_DATA_PATH
from ..utils import setup_logging
from .doc_classifier import LoanDocClassifier
from .errors import NotFoundError, PersistenceError
from .models import ApplicationRecord, Document

logger = setup_logging()


class DocumentStore(Protocol):
    """Read applications and documents by id; write analyses back."""

    async def get_application(self, application_id: str) -> ApplicationRecord: ...

    async def get_documents(self, application_id: str) -> List[Document]: ...

    async def get_document(self, document_id: str) -> Document: ...

    async def save_analysis(self, document_id: str, key: str, blob: Dict[str, Any]) -> None: ...


class JsonDocumentStore:
    """
    File-backed document store.

    Reads are tolerant of camelCase keys written by other services. Writes
    only touch the ``metadata`` block of a document.
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = Path(base_path) if base_path is not None else DEFAULT_DATA_PATH
        self.classifier = LoanDocClassifier()

    @property
    def applications_path(self) -> Path:
        return self.base_path / "applications"

    @property
    def documents_path(self) -> Path:
        return self.base_path / "documents"

    # Sync helpers (run in a worker thread)

    def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _to_document(self, data: Dict[str, Any]) -> Document:
        document = Document.from_dict(data)
        # Untyped uploads get a type from their filename
        if document.document_type in ("", "other") and document.file_name:
            document.document_type = self.classifier.classify_document(document.file_name)
        return document

    def _load_application(self, application_id: str) -> ApplicationRecord:
        data = self._read_json(self.applications_path / f"{application_id}.json")
        if data is None:
            raise NotFoundError("Application", application_id)
        data.setdefault("id", application_id)
        return ApplicationRecord.from_dict(data)

    def _load_document(self, document_id: str) -> Document:
        data = self._read_json(self.documents_path / f"{document_id}.json")
        if data is None:
            raise NotFoundError("Document", document_id)
        data.setdefault("id", document_id)
        return self._to_document(data)

    def _load_documents(self, application_id: str) -> List[Document]:
        if not self.documents_path.exists():
            return []

        documents = []
        for path in self.documents_path.glob("*.json"):
            try:
                data = self._read_json(path) or {}
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable document file %s: %s", path.name, e)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping document file %s: not a JSON object", path.name)
                continue
            data.setdefault("id", path.stem)
            document = self._to_document(data)
            if document.application_id == application_id:
                documents.append(document)

        return sorted(documents, key=lambda d: (d.uploaded_at or "", d.id))

    def _write_analysis(self, document_id: str, key: str, blob: Dict[str, Any]) -> None:
        path = self.documents_path / f"{document_id}.json"
        try:
            data = self._read_json(path)
            if data is None:
                raise NotFoundError("Document", document_id)
            metadata = data.setdefault("metadata", {})
            metadata[key] = blob
            metadata["updated_at"] = datetime.now(timezone.utc).isoformat()
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save {key} for document {document_id}: {e}") from e

    # Async contract

    async def get_application(self, application_id: str) -> ApplicationRecord:
        return await asyncio.to_thread(self._load_application, application_id)

    async def get_documents(self, application_id: str) -> List[Document]:
        return await asyncio.to_thread(self._load_documents, application_id)

    async def get_document(self, document_id: str) -> Document:
        return await asyncio.to_thread(self._load_document, document_id)

    async def save_analysis(self, document_id: str, key: str, blob: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_analysis, document_id, key, blob)
        logger.debug("Saved %s for document %s", key, document_id)

    # Seeding helpers used by loaders and tests

    def save_application(self, data: Dict[str, Any]) -> None:
        """Write an application record (sync)."""
        self.applications_path.mkdir(parents=True, exist_ok=True)
        with open(self.applications_path / f"{data['id']}.json", "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)

    def save_document(self, data: Dict[str, Any]) -> None:
        """Write a document record (sync)."""
        self.documents_path.mkdir(parents=True, exist_ok=True)
        with open(self.documents_path / f"{data['id']}.json", "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
