"""
Raw text access for stored documents.
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol

from ..utils import setup_logging
from .errors import ExtractionUnavailableError
from .models import Document

logger = setup_logging()


class TextExtractor(Protocol):
    """Turns a stored document into raw text."""

    async def extract_text(self, document: Document) -> str: ...


class StoredTextExtractor:
    """
    Text extractor for documents that already carry their text.

    OCR happens upstream; this returns ``metadata["extracted_text"]`` when
    present and otherwise reads the document's file as UTF-8 text.
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = Path(base_path) if base_path is not None else None

    def _resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        if not path.is_absolute() and self.base_path is not None:
            path = self.base_path / path
        return path

    def _read_file(self, document: Document) -> str:
        if not document.file_path:
            raise ExtractionUnavailableError(document.id, "no stored text or file path")
        path = self._resolve(document.file_path)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionUnavailableError(document.id, str(e)) from e

    async def extract_text(self, document: Document) -> str:
        text = document.metadata.get("extracted_text")
        if not text:
            text = await asyncio.to_thread(self._read_file, document)

        if not text or not text.strip():
            raise ExtractionUnavailableError(document.id, "document text is empty")

        logger.debug("Extracted %d characters from document %s", len(text), document.id)
        return text
