"""
Field aggregator for business loan applications.

Merges the fields extracted from every document of an application into one
map per field label, detects conflicting values and picks a consensus value
for each label.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import reduce
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import IntelligenceSettings
from ..utils import normalize_value, setup_logging
from .constants import (
    CONFLICT_RECOMMENDATIONS,
    CRITICAL_CONFLICT_FIELDS,
    HIGH_CONFLICT_FIELDS,
    LOW_CONFIDENCE_THRESHOLD,
    ExtractionMethod,
    Severity,
)
from .errors import InferenceUnavailableError
from .field_extractor import FieldExtractor
from .inference import TASK_RESOLVE_CONFLICT, ConflictResolution, InferenceClient
from .models import Document, ExtractedField, FieldEntry
from .storage import DocumentStore

logger = setup_logging()


@dataclass
class FieldConflict:
    """Disagreeing values for one field label."""
    field_name: str
    conflicting_values: List[FieldEntry]
    severity: Severity
    recommendation: str
    resolution_note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "conflicting_values": [e.to_dict() for e in self.conflicting_values],
            "severity": self.severity.value,
            "recommendation": self.recommendation,
            "resolution_note": self.resolution_note,
        }


@dataclass
class DocumentsSummary:
    total_documents: int = 0
    documents_processed: int = 0
    fields_extracted: int = 0
    conflicts_found: int = 0


@dataclass
class AggregatedFields:
    """All extracted fields of an application, grouped by label."""
    application_id: str
    field_map: Dict[str, List[FieldEntry]] = field(default_factory=dict)
    conflicts: List[FieldConflict] = field(default_factory=list)
    consensus_fields: Dict[str, str] = field(default_factory=dict)
    consensus_sources: Dict[str, FieldEntry] = field(default_factory=dict)
    documents_summary: DocumentsSummary = field(default_factory=DocumentsSummary)
    aggregated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls, application_id: str) -> "AggregatedFields":
        return cls(application_id=application_id)

    def conflict_for(self, label: str) -> Optional[FieldConflict]:
        return next((c for c in self.conflicts if c.field_name == label), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "application_id": self.application_id,
            "field_map": {
                label: [e.to_dict() for e in entries]
                for label, entries in self.field_map.items()
            },
            "conflicts": [c.to_dict() for c in self.conflicts],
            "consensus_fields": dict(self.consensus_fields),
            "documents_summary": vars(self.documents_summary).copy(),
            "aggregated_at": self.aggregated_at.isoformat(),
        }


@dataclass
class ConflictSummary:
    """Conflict totals across many applications."""
    total_applications: int = 0
    applications_with_conflicts: int = 0
    total_conflicts: int = 0
    conflicts_by_field: Dict[str, int] = field(default_factory=dict)
    critical_conflicts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_applications": self.total_applications,
            "applications_with_conflicts": self.applications_with_conflicts,
            "total_conflicts": self.total_conflicts,
            "conflicts_by_field": dict(self.conflicts_by_field),
            "critical_conflicts": self.critical_conflicts,
        }


# =============================================================================
# Pure aggregation rules
# =============================================================================

def build_field_map(extractions: Sequence[Tuple[Document, List[ExtractedField]]]) -> Dict[str, List[FieldEntry]]:
    """Group extracted fields by exact label, keeping document order."""
    field_map: Dict[str, List[FieldEntry]] = {}
    for document, fields in extractions:
        for extracted in fields:
            field_map.setdefault(extracted.label, []).append(FieldEntry.from_field(extracted, document))
    return field_map


def distinct_values(entries: Sequence[FieldEntry]) -> set:
    return {normalize_value(entry.value) for entry in entries}


def is_conflict(entries: Sequence[FieldEntry]) -> bool:
    """True when two or more entries disagree after normalisation."""
    return len(entries) >= 2 and len(distinct_values(entries)) >= 2


def conflict_severity(label: str, entries: Sequence[FieldEntry]) -> Severity:
    if label in CRITICAL_CONFLICT_FIELDS:
        return Severity.CRITICAL
    if label in HIGH_CONFLICT_FIELDS:
        return Severity.HIGH

    mean_confidence = sum(e.confidence for e in entries) / len(entries)
    if mean_confidence < LOW_CONFIDENCE_THRESHOLD:
        return Severity.MEDIUM
    return Severity.LOW


def conflict_recommendation(label: str) -> str:
    return CONFLICT_RECOMMENDATIONS.get(
        label, f"Review all source documents for {label} and determine correct value"
    )


def _prefer(best: FieldEntry, current: FieldEntry) -> FieldEntry:
    if current.confidence != best.confidence:
        return current if current.confidence > best.confidence else best
    # Equal confidence: inference beats pattern, otherwise first seen stays
    if current.method is ExtractionMethod.INFERENCE and best.method is ExtractionMethod.PATTERN:
        return current
    return best


def choose_consensus(entries: Sequence[FieldEntry], conflicted: bool) -> FieldEntry:
    """Entry whose value represents the label."""
    if not conflicted:
        return entries[0]
    return reduce(_prefer, entries)


def format_resolution(resolution: ConflictResolution) -> str:
    return (
        f"Recommended: {resolution.recommended_value} "
        f"(confidence {round(resolution.confidence * 100)}%) - "
        f"{resolution.reasoning or 'No reasoning provided'}"
    )


# =============================================================================
# Aggregator
# =============================================================================

class FieldAggregator:
    """
    Builds ``AggregatedFields`` for an application.

    Per-document extraction failures are logged and contribute no fields.
    When enabled, inference proposes a resolution for each conflict; the
    proposal is kept as a note and never overrides the consensus value.
    """

    def __init__(
        self,
        store: DocumentStore,
        field_extractor: FieldExtractor,
        inference: InferenceClient,
        settings: Optional[IntelligenceSettings] = None,
    ):
        self.store = store
        self.field_extractor = field_extractor
        self.inference = inference
        self._settings = settings

    @property
    def settings(self) -> IntelligenceSettings:
        """Settings passed in, or loaded from the environment on first use."""
        if self._settings is None:
            self._settings = IntelligenceSettings.from_env()
        return self._settings

    async def aggregate(self, application_id: str, resolve_conflicts: Optional[bool] = None) -> AggregatedFields:
        """
        Aggregate extracted fields across all documents of an application.

        Args:
            application_id: Application identifier
            resolve_conflicts: Ask inference for conflict resolutions
                (defaults to settings.resolve_conflicts)

        Raises:
            NotFoundError: If the application does not exist
        """
        if resolve_conflicts is None:
            resolve_conflicts = self.settings.resolve_conflicts

        await self.store.get_application(application_id)
        documents = await self.store.get_documents(application_id)
        if not documents:
            logger.info("No documents for application %s; returning empty aggregation", application_id)
            return AggregatedFields.empty(application_id)

        extractions = await self._extract_all(documents)
        field_map = build_field_map([(doc, fields or []) for doc, fields in extractions])

        conflicts = [
            FieldConflict(
                field_name=label,
                conflicting_values=list(entries),
                severity=conflict_severity(label, entries),
                recommendation=conflict_recommendation(label),
            )
            for label, entries in field_map.items()
            if is_conflict(entries)
        ]

        if resolve_conflicts and conflicts:
            notes = await asyncio.gather(*(self._resolve_conflict(c) for c in conflicts))
            for conflict, note in zip(conflicts, notes):
                conflict.resolution_note = note

        conflicted = {c.field_name for c in conflicts}
        consensus_sources = {
            label: choose_consensus(entries, label in conflicted)
            for label, entries in field_map.items()
        }

        summary = DocumentsSummary(
            total_documents=len(documents),
            documents_processed=sum(1 for _, fields in extractions if fields is not None),
            fields_extracted=sum(len(entries) for entries in field_map.values()),
            conflicts_found=len(conflicts),
        )

        logger.info(
            "Aggregated application %s: %d unique fields, %d conflicts",
            application_id, len(field_map), len(conflicts),
        )

        return AggregatedFields(
            application_id=application_id,
            field_map=field_map,
            conflicts=conflicts,
            consensus_fields={label: entry.value for label, entry in consensus_sources.items()},
            consensus_sources=consensus_sources,
            documents_summary=summary,
        )

    async def _extract_all(self, documents: List[Document]) -> List[Tuple[Document, Optional[List[ExtractedField]]]]:
        """Extract fields for every document; None marks a failed document."""
        results = await asyncio.gather(*(self._extract_one(doc) for doc in documents))
        return list(zip(documents, results))

    async def _extract_one(self, document: Document) -> Optional[List[ExtractedField]]:
        try:
            return await self.field_extractor.extract_fields(document)
        except Exception as e:
            logger.warning("Failed to extract fields from document %s: %s", document.id, e)
            return None

    async def _resolve_conflict(self, conflict: FieldConflict) -> Optional[str]:
        payload = {
            "field_name": conflict.field_name,
            "candidates": [
                {
                    "value": entry.value,
                    "source": entry.document_type,
                    "confidence": entry.confidence,
                    "method": entry.method.value,
                }
                for entry in conflict.conflicting_values
            ],
        }
        try:
            resolution = await self.inference.infer(TASK_RESOLVE_CONFLICT, payload, ConflictResolution)
        except InferenceUnavailableError as e:
            logger.warning("Conflict resolution for %s unavailable: %s", conflict.field_name, e)
            return None
        return format_resolution(resolution)

    async def conflict_summary(self, application_ids: List[str]) -> ConflictSummary:
        """Summarise conflicts across applications; failing applications are skipped."""
        results = await asyncio.gather(
            *(self.aggregate(app_id, resolve_conflicts=False) for app_id in application_ids),
            return_exceptions=True,
        )

        summary = ConflictSummary(total_applications=len(application_ids))
        for app_id, result in zip(application_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Skipping application %s in conflict summary: %s", app_id, result)
                continue
            if not result.conflicts:
                continue
            summary.applications_with_conflicts += 1
            summary.total_conflicts += len(result.conflicts)
            for conflict in result.conflicts:
                summary.conflicts_by_field[conflict.field_name] = (
                    summary.conflicts_by_field.get(conflict.field_name, 0) + 1
                )
                if conflict.severity is Severity.CRITICAL:
                    summary.critical_conflicts += 1
        return summary
