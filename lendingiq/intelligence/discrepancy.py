"""
Discrepancy checker for business loan applications.

Compares the applicant's self-reported values with the consensus values
aggregated from the supporting documents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rapidfuzz.distance import Levenshtein

from ..config import IntelligenceSettings
from ..utils import first_number, normalize_value, setup_logging
from .aggregator import AggregatedFields, FieldAggregator
from .constants import (
    DISCREPANCY_CONFIDENCE_FLOOR,
    FIELD_BUSINESS_ADDRESS,
    FIELD_BUSINESS_NAME,
    FIELD_GST_NUMBER,
    FIELD_REVENUE_LAST_YEAR,
    ComparisonStrategy,
    Severity,
)
from .errors import InferenceUnavailableError
from .inference import TASK_FIND_DISCREPANCIES, InferenceClient, InferredDiscrepancies
from .models import ApplicationRecord
from .storage import DocumentStore

logger = setup_logging()

INFERENCE_SOURCE = "Inference analysis"


@dataclass(frozen=True)
class FieldCheck:
    """One row of the comparison table."""
    application_field: str
    document_label: str
    strategy: ComparisonStrategy
    severity: Severity
    description: str


FIELD_CHECKS = (
    FieldCheck(
        "legal_business_name", FIELD_BUSINESS_NAME, ComparisonStrategy.FUZZY_STRING, Severity.CRITICAL,
        "Business name mismatch between application and documents",
    ),
    FieldCheck(
        "business_address", FIELD_BUSINESS_ADDRESS, ComparisonStrategy.FUZZY_STRING, Severity.HIGH,
        "Business address mismatch between application and documents",
    ),
    FieldCheck(
        "gst_number", FIELD_GST_NUMBER, ComparisonStrategy.FUZZY_STRING, Severity.HIGH,
        "GST number mismatch between application and documents",
    ),
    FieldCheck(
        "amount_requested", FIELD_REVENUE_LAST_YEAR, ComparisonStrategy.NUMERIC_RATIO, Severity.MEDIUM,
        "Requested amount is high relative to reported revenue",
    ),
)

FIELD_SUGGESTIONS = {
    FIELD_BUSINESS_NAME: "Verify legal business name with official registration documents",
    FIELD_BUSINESS_ADDRESS: "Confirm business address with current utility bills or lease agreement",
    FIELD_GST_NUMBER: "Validate GST number with Canada Revenue Agency",
}


@dataclass
class FieldDiscrepancy:
    field_name: str
    application_value: str
    document_value: str
    document_source: str
    severity: Severity
    description: str
    suggestion: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "application_value": self.application_value,
            "document_value": self.document_value,
            "document_source": self.document_source,
            "severity": self.severity.value,
            "description": self.description,
            "suggestion": self.suggestion,
        }


@dataclass
class DiscrepancyReport:
    application_id: str
    discrepancies: List[FieldDiscrepancy] = field(default_factory=list)
    overall_risk: Severity = Severity.LOW
    confidence: float = 0.0
    checked_fields: int = 0
    flagged_fields: int = 0
    recommendations: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls, application_id: str) -> "DiscrepancyReport":
        """Report for an application without documents."""
        return cls(
            application_id=application_id,
            recommendations=["No documents available for comparison"],
        )

    @classmethod
    def unavailable(cls, application_id: str) -> "DiscrepancyReport":
        """Stand-in used when the check itself could not run."""
        return cls(application_id=application_id, overall_risk=Severity.MEDIUM)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "application_id": self.application_id,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "overall_risk": self.overall_risk.value,
            "confidence": self.confidence,
            "checked_fields": self.checked_fields,
            "flagged_fields": self.flagged_fields,
            "recommendations": list(self.recommendations),
            "checked_at": self.checked_at.isoformat(),
        }


# =============================================================================
# Comparison rules
# =============================================================================

def string_similarity(left: Any, right: Any) -> float:
    """Normalised Levenshtein similarity in [0, 1] after value normalisation."""
    return Levenshtein.normalized_similarity(normalize_value(left), normalize_value(right))


def is_text_mismatch(app_value: Any, doc_value: Any, threshold: float) -> bool:
    a, b = normalize_value(app_value), normalize_value(doc_value)
    if not a or not b or a == b:
        return False
    return string_similarity(a, b) < threshold


def is_loan_implausible(amount_requested: Any, revenue_value: Any, threshold: float) -> bool:
    """True when the requested amount exceeds threshold x reported revenue."""
    revenue = first_number(revenue_value)
    amount = first_number(amount_requested)
    if not revenue or amount is None:
        return False
    return amount / revenue > threshold


def parse_severity(value: Any) -> Severity:
    """Clamp free-text severity to the four allowed levels (default medium)."""
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return Severity.MEDIUM


def overall_risk(discrepancies: List[FieldDiscrepancy]) -> Severity:
    high_count = sum(1 for d in discrepancies if d.severity is Severity.HIGH)
    if any(d.severity is Severity.CRITICAL for d in discrepancies):
        return Severity.CRITICAL
    if high_count >= 2:
        return Severity.HIGH
    if discrepancies:
        return Severity.MEDIUM
    return Severity.LOW


def report_confidence(flagged: int, checked: int) -> float:
    if checked == 0:
        return DISCREPANCY_CONFIDENCE_FLOOR
    return max(DISCREPANCY_CONFIDENCE_FLOOR, 1 - (flagged / checked) * 0.5)


def field_suggestion(label: str) -> str:
    return FIELD_SUGGESTIONS.get(label, f"Verify {label} information and resolve discrepancy")


def build_recommendations(discrepancies: List[FieldDiscrepancy]) -> List[str]:
    if not discrepancies:
        return ["No significant discrepancies found in document comparison"]

    recommendations = []
    if any(d.severity is Severity.CRITICAL for d in discrepancies):
        recommendations.append("URGENT: Critical discrepancies require immediate attention before proceeding")
    if any(d.field_name == FIELD_BUSINESS_NAME for d in discrepancies):
        recommendations.append("Verify legal business name with incorporation documents")
    if any(d.field_name == FIELD_BUSINESS_ADDRESS for d in discrepancies):
        recommendations.append("Request current business license or utility bill for address verification")
    if any("Revenue" in d.field_name for d in discrepancies):
        recommendations.append("Request additional financial documentation to clarify revenue figures")
    if len(discrepancies) >= 3:
        recommendations.append("Consider requiring additional documentation due to multiple discrepancies")
    return recommendations


# =============================================================================
# Checker
# =============================================================================

class DiscrepancyChecker:
    """
    Produces a ``DiscrepancyReport`` for an application.

    The fixed comparison table runs first. An open-ended inference pass then
    adds findings the table cannot express; if inference is unavailable the
    table findings are returned on their own.
    """

    def __init__(
        self,
        store: DocumentStore,
        aggregator: FieldAggregator,
        inference: InferenceClient,
        settings: Optional[IntelligenceSettings] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.inference = inference
        self._settings = settings

    @property
    def settings(self) -> IntelligenceSettings:
        if self._settings is None:
            self._settings = IntelligenceSettings.from_env()
        return self._settings

    def compare(self, application: ApplicationRecord, aggregated: AggregatedFields) -> List[FieldDiscrepancy]:
        """Run the comparison table against the consensus values."""
        discrepancies = []
        for check in FIELD_CHECKS:
            app_value = getattr(application, check.application_field)
            doc_value = aggregated.consensus_fields.get(check.document_label)
            if not app_value or doc_value is None:
                continue

            if check.strategy is ComparisonStrategy.NUMERIC_RATIO:
                flagged = is_loan_implausible(app_value, doc_value, self.settings.loan_to_revenue_threshold)
            else:
                flagged = is_text_mismatch(app_value, doc_value, self.settings.similarity_threshold)
            if not flagged:
                continue

            source = aggregated.consensus_sources.get(check.document_label)
            discrepancies.append(FieldDiscrepancy(
                field_name=check.document_label,
                application_value=str(app_value),
                document_value=doc_value,
                document_source=source.document_name if source else "Unknown Document",
                severity=check.severity,
                description=check.description,
                suggestion=field_suggestion(check.document_label),
            ))
        return discrepancies

    async def check(self, application_id: str) -> DiscrepancyReport:
        """
        Compare application data with document data.

        Raises:
            NotFoundError: If the application does not exist
        """
        application = await self.store.get_application(application_id)
        aggregated = await self.aggregator.aggregate(application_id, resolve_conflicts=False)

        if aggregated.documents_summary.total_documents == 0:
            logger.info("No documents for application %s; nothing to compare", application_id)
            return DiscrepancyReport.empty(application_id)

        discrepancies = self.compare(application, aggregated)
        discrepancies.extend(await self._infer_discrepancies(application, aggregated, discrepancies))

        checked = aggregated.documents_summary.fields_extracted
        report = DiscrepancyReport(
            application_id=application_id,
            discrepancies=discrepancies,
            overall_risk=overall_risk(discrepancies),
            confidence=report_confidence(len(discrepancies), checked),
            checked_fields=checked,
            flagged_fields=len(discrepancies),
            recommendations=build_recommendations(discrepancies),
        )

        logger.info(
            "Discrepancy check for %s: %d discrepancies, %s risk",
            application_id, len(discrepancies), report.overall_risk.value,
        )
        return report

    async def _infer_discrepancies(
        self,
        application: ApplicationRecord,
        aggregated: AggregatedFields,
        found: List[FieldDiscrepancy],
    ) -> List[FieldDiscrepancy]:
        payload = {
            "application": application.snapshot(),
            "document_fields": dict(aggregated.consensus_fields),
            "already_flagged": [d.field_name for d in found],
        }
        try:
            result = await self.inference.infer(TASK_FIND_DISCREPANCIES, payload, InferredDiscrepancies)
        except InferenceUnavailableError as e:
            logger.warning("Inferred discrepancy pass unavailable for %s: %s", application.id, e)
            return []

        return [
            FieldDiscrepancy(
                field_name=item.field_name or "Unknown Field",
                application_value="See application",
                document_value="See documents",
                document_source=INFERENCE_SOURCE,
                severity=parse_severity(item.severity),
                description=item.issue or "Inferred discrepancy",
                suggestion="Review and verify this information manually",
            )
            for item in result.discrepancies
        ]
