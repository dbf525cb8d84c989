"""
Labelled field extractor for loan application documents.

Reads "Label: value" lines out of raw document text. Documents that already
carry extracted fields in their metadata are returned as-is.
"""

import re
from typing import List, Optional, Protocol, Tuple

from ..utils import setup_logging
from .constants import (
    FIELD_ACCOUNT_NUMBER,
    FIELD_BANK_NAME,
    FIELD_BUSINESS_ADDRESS,
    FIELD_BUSINESS_NAME,
    FIELD_GST_NUMBER,
    FIELD_REVENUE_LAST_YEAR,
    FIELD_REVENUE_YTD,
    ExtractionMethod,
)
from .models import Document, ExtractedField
from .text_extraction import TextExtractor

logger = setup_logging()

EXACT_LABEL_CONFIDENCE = 0.7
ALIAS_LABEL_CONFIDENCE = 0.5


class FieldExtractor(Protocol):
    """Produces the extracted fields for one document."""

    async def extract_fields(self, document: Document) -> List[ExtractedField]: ...


class PatternFieldExtractor:
    """
    Extracts known fields from "Label: value" lines.

    Each canonical label has its exact spelling plus aliases used by other
    document types. An exact label beats an alias within the same document.
    """

    # (canonical label, aliases)
    LABELS: List[Tuple[str, Tuple[str, ...]]] = [
        (FIELD_BUSINESS_NAME, ("Legal Name", "Legal Business Name", "Company Name")),
        (FIELD_GST_NUMBER, ("Business Number", "GST/HST Number", "BN")),
        (FIELD_BUSINESS_ADDRESS, ("Address", "Mailing Address")),
        (FIELD_REVENUE_LAST_YEAR, ("Annual Revenue", "Total Revenue", "Gross Revenue")),
        (FIELD_REVENUE_YTD, ("YTD Revenue", "Revenue Year to Date")),
        (FIELD_ACCOUNT_NUMBER, ("Account No", "Acct Number")),
        (FIELD_BANK_NAME, ("Financial Institution", "Bank")),
    ]

    def __init__(self, text_extractor: TextExtractor):
        self.text_extractor = text_extractor
        self._compiled = [
            (label, self._line_pattern(label), [self._line_pattern(a) for a in aliases])
            for label, aliases in self.LABELS
        ]

    @staticmethod
    def _line_pattern(label: str) -> "re.Pattern[str]":
        return re.compile(
            r"^\s*" + re.escape(label) + r"\s*[:#\-]\s*(?P<value>\S.*?)\s*$",
            re.IGNORECASE | re.MULTILINE,
        )

    def extract_from_text(self, text: str) -> List[ExtractedField]:
        """Extract fields from raw text (one value per canonical label)."""
        fields = []
        for label, exact, aliases in self._compiled:
            match = exact.search(text)
            confidence = EXACT_LABEL_CONFIDENCE
            if not match:
                match = self._first_alias_match(aliases, text)
                confidence = ALIAS_LABEL_CONFIDENCE
            if match:
                fields.append(ExtractedField(
                    label=label,
                    value=match.group("value"),
                    confidence=confidence,
                    method=ExtractionMethod.PATTERN,
                ))
        return fields

    @staticmethod
    def _first_alias_match(aliases, text: str) -> Optional["re.Match[str]"]:
        for pattern in aliases:
            match = pattern.search(text)
            if match:
                return match
        return None

    async def extract_fields(self, document: Document) -> List[ExtractedField]:
        cached = document.cached_fields()
        if cached is not None:
            return cached

        text = await self.text_extractor.extract_text(document)
        fields = self.extract_from_text(text)
        logger.debug("Extracted %d fields from document %s", len(fields), document.id)
        return fields
