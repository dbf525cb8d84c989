"""
Risk scorer for business loan applications.

Combines the application record with the field aggregation, discrepancy
report and banking analysis into five 0-10 component scores and one
weighted overall score. Every sub-analysis is optional: a failure is
replaced by an explicit stand-in and scoring continues.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..config import IntelligenceSettings
from ..utils import clamp, first_number, setup_logging
from .aggregator import AggregatedFields, FieldAggregator
from .banking import BankingAnalysis, BankingAnalyzer
from .constants import (
    FIELD_GST_NUMBER,
    FIELD_REVENUE_LAST_YEAR,
    FIELD_REVENUE_YTD,
    HIGH_RISK_INDUSTRIES,
    LOAN_PER_BUSINESS_MONTH_LIMIT,
    MIN_USE_OF_FUNDS_LENGTH,
    NO_BANKING_DATA_RISK,
    RISK_COMPONENT_WEIGHTS,
    RISK_LEVEL_BANDS,
    CashflowTrend,
    RiskLevel,
    Severity,
)
from .discrepancy import DiscrepancyChecker, DiscrepancyReport
from .doc_classifier import banking_statements
from .inference import TASK_RISK_NARRATIVE, InferenceClient, RiskNarrative
from .models import ApplicationRecord, Document
from .outcome import Outcome, gather_outcome
from .storage import DocumentStore

logger = setup_logging()


@dataclass
class RiskScoreComponents:
    business_risk: float = 5.0
    financial_risk: float = 5.0
    document_risk: float = 5.0
    banking_risk: float = 5.0
    compliance_risk: float = 5.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "business_risk": self.business_risk,
            "financial_risk": self.financial_risk,
            "document_risk": self.document_risk,
            "banking_risk": self.banking_risk,
            "compliance_risk": self.compliance_risk,
        }


@dataclass
class RiskScoreAnalysis:
    application_id: str
    overall_score: float
    risk_level: RiskLevel
    components: RiskScoreComponents
    risk_factors: List[str] = field(default_factory=list)
    mitigating_factors: List[str] = field(default_factory=list)
    justification: str = ""
    recommendations: List[str] = field(default_factory=list)
    confidence: float = 0.0
    degraded_inputs: List[str] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "application_id": self.application_id,
            "overall_score": self.overall_score,
            "risk_level": self.risk_level.value,
            "components": self.components.to_dict(),
            "risk_factors": list(self.risk_factors),
            "mitigating_factors": list(self.mitigating_factors),
            "justification": self.justification,
            "recommendations": list(self.recommendations),
            "confidence": self.confidence,
            "degraded_inputs": list(self.degraded_inputs),
            "calculated_at": self.calculated_at.isoformat(),
        }


@dataclass
class ScoringInputs:
    """Everything the scoring rules look at, with each sub-call's outcome."""
    application: ApplicationRecord
    documents: Outcome[List[Document]]
    aggregation: Outcome[AggregatedFields]
    discrepancies: Outcome[DiscrepancyReport]
    banking: Outcome[Optional[BankingAnalysis]]

    @property
    def degraded(self) -> List[str]:
        outcomes = {
            "documents": self.documents,
            "aggregation": self.aggregation,
            "discrepancies": self.discrepancies,
            "banking": self.banking,
        }
        return [name for name, outcome in outcomes.items() if outcome.degraded]


# =============================================================================
# Scoring rules
# =============================================================================

def _bounded(risk: float) -> float:
    return clamp(risk, 0, 10)


def business_risk(application: ApplicationRecord) -> float:
    risk = 5.0
    months = application.time_in_business

    if months is not None:
        if months >= 60:
            risk -= 2
        elif months >= 24:
            risk -= 1
        elif months < 12:
            risk += 2

    industry = (application.industry or "").lower()
    if any(name in industry for name in HIGH_RISK_INDUSTRIES):
        risk += 1

    if application.amount_requested and months:
        if application.amount_requested / months > LOAN_PER_BUSINESS_MONTH_LIMIT:
            risk += 1

    return _bounded(risk)


def financial_risk(
    application: ApplicationRecord,
    aggregation: AggregatedFields,
    assumed_term_months: int,
) -> float:
    risk = 5.0
    revenue = application.monthly_revenue

    if revenue is None:
        risk += 1
    elif revenue >= 100_000:
        risk -= 2
    elif revenue >= 50_000:
        risk -= 1
    elif revenue < 10_000:
        risk += 2

    if application.amount_requested and revenue is not None:
        monthly_payment = application.amount_requested / assumed_term_months
        ratio = monthly_payment / (revenue or 1)
        if ratio > 0.3:
            risk += 2
        elif ratio > 0.2:
            risk += 1
        elif ratio < 0.1:
            risk -= 1

    last_year = first_number(aggregation.consensus_fields.get(FIELD_REVENUE_LAST_YEAR))
    ytd = first_number(aggregation.consensus_fields.get(FIELD_REVENUE_YTD))
    if last_year and ytd is not None:
        growth = ytd / last_year - 1
        if growth > 0.2:
            risk -= 1
        elif growth < -0.1:
            risk += 1

    return _bounded(risk)


def document_risk(document_count: int, report: DiscrepancyReport) -> float:
    risk = 5.0
    if document_count >= 5:
        risk -= 1
    elif document_count < 3:
        risk += 2

    risk += min(3.0, len(report.discrepancies) * 0.5)

    tier_adjustment = {
        Severity.LOW: -1,
        Severity.HIGH: 1,
        Severity.CRITICAL: 2,
    }
    risk += tier_adjustment.get(report.overall_risk, 0)
    return _bounded(risk)


def banking_risk(banking: Optional[BankingAnalysis]) -> float:
    if banking is None:
        return float(NO_BANKING_DATA_RISK)

    risk = 5.0
    summary = banking.overall_summary

    if summary.total_nsf_incidents == 0:
        risk -= 1
    elif summary.total_nsf_incidents >= 3:
        risk += 2
    else:
        risk += 1

    if summary.overdraft_frequency > 20:
        risk += 2
    elif summary.overdraft_frequency > 10:
        risk += 1
    elif summary.overdraft_frequency < 5:
        risk -= 1

    if summary.cashflow_trend is CashflowTrend.IMPROVING:
        risk -= 1
    elif summary.cashflow_trend is CashflowTrend.DECLINING:
        risk += 2

    if summary.average_monthly_balance > 50_000:
        risk -= 1
    elif summary.average_monthly_balance < 5_000:
        risk += 1

    return _bounded(risk)


def compliance_risk(application: ApplicationRecord, aggregation: AggregatedFields) -> float:
    risk = 3.0
    gst_number = aggregation.consensus_fields.get(FIELD_GST_NUMBER) or application.gst_number
    if not gst_number:
        risk += 1
    if not application.legal_business_name:
        risk += 1
    if not application.use_of_funds or len(application.use_of_funds) < MIN_USE_OF_FUNDS_LENGTH:
        risk += 1
    return _bounded(risk)


def overall_score(components: RiskScoreComponents) -> float:
    """Weighted sum of components, rounded half-up to one decimal."""
    values = components.to_dict()
    weighted = sum(values[name] * weight for name, weight in RISK_COMPONENT_WEIGHTS.items())
    return _bounded(math.floor(weighted * 10 + 0.5) / 10)


def risk_level(score: float) -> RiskLevel:
    for upper_bound, level in RISK_LEVEL_BANDS:
        if score <= upper_bound:
            return level
    return RiskLevel.VERY_HIGH


def scoring_confidence(inputs: ScoringInputs) -> float:
    application = inputs.application
    document_count = len(inputs.documents.value)

    confidence = 0.4
    if application.monthly_revenue is not None:
        confidence += 0.1
    if application.time_in_business is not None:
        confidence += 0.1
    if document_count >= 3:
        confidence += 0.1
    if document_count >= 5:
        confidence += 0.1
    if inputs.banking.value is not None:
        confidence += 0.1
    if inputs.aggregation.value.documents_summary.documents_processed > 0:
        confidence += 0.1
    return round(min(1.0, confidence), 2)


def fallback_narrative(score: float) -> RiskNarrative:
    return RiskNarrative(
        risk_factors=["Narrative analysis unavailable - manual review required"],
        mitigating_factors=[],
        justification=f"Risk score {score}/10 calculated using quantitative component analysis",
        recommendations=["Conduct manual risk review"],
    )


# =============================================================================
# Scorer
# =============================================================================

class RiskScorer:
    """
    Scores an application end to end.

    Only a missing application record is fatal. Aggregation, discrepancy
    and banking sub-calls run concurrently and degrade independently.
    """

    def __init__(
        self,
        store: DocumentStore,
        aggregator: FieldAggregator,
        discrepancy_checker: DiscrepancyChecker,
        banking_analyzer: BankingAnalyzer,
        inference: InferenceClient,
        settings: Optional[IntelligenceSettings] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.discrepancy_checker = discrepancy_checker
        self.banking_analyzer = banking_analyzer
        self.inference = inference
        self._settings = settings

    @property
    def settings(self) -> IntelligenceSettings:
        if self._settings is None:
            self._settings = IntelligenceSettings.from_env()
        return self._settings

    async def gather_inputs(self, application_id: str) -> ScoringInputs:
        """
        Load the application and run every sub-analysis.

        Raises:
            NotFoundError: If the application does not exist
        """
        application = await self.store.get_application(application_id)

        aggregation, discrepancies, (documents, banking) = await asyncio.gather(
            gather_outcome(
                self.aggregator.aggregate(application_id, resolve_conflicts=False),
                AggregatedFields.empty(application_id),
                "Field aggregation",
            ),
            gather_outcome(
                self.discrepancy_checker.check(application_id),
                DiscrepancyReport.unavailable(application_id),
                "Discrepancy check",
            ),
            self._documents_and_banking(application_id),
        )

        return ScoringInputs(
            application=application,
            documents=documents,
            aggregation=aggregation,
            discrepancies=discrepancies,
            banking=banking,
        )

    async def _documents_and_banking(
        self, application_id: str
    ) -> Tuple[Outcome[List[Document]], Outcome[Optional[BankingAnalysis]]]:
        documents = await gather_outcome(self.store.get_documents(application_id), [], "Document listing")
        banking = await gather_outcome(self._analyze_first_statement(documents.value), None, "Banking analysis")
        return documents, banking

    async def _analyze_first_statement(self, documents: List[Document]) -> Optional[BankingAnalysis]:
        statements = banking_statements(documents)
        if not statements:
            return None
        return await self.banking_analyzer.analyze(statements[0].id)

    def compute_components(self, inputs: ScoringInputs) -> RiskScoreComponents:
        application = inputs.application
        aggregation = inputs.aggregation.value
        return RiskScoreComponents(
            business_risk=business_risk(application),
            financial_risk=financial_risk(application, aggregation, self.settings.assumed_term_months),
            document_risk=document_risk(len(inputs.documents.value), inputs.discrepancies.value),
            banking_risk=banking_risk(inputs.banking.value),
            compliance_risk=compliance_risk(application, aggregation),
        )

    async def score(self, application_id: str) -> RiskScoreAnalysis:
        """
        Compute a fresh risk score for an application.

        Raises:
            NotFoundError: If the application does not exist
        """
        inputs = await self.gather_inputs(application_id)
        components = self.compute_components(inputs)
        score = overall_score(components)
        level = risk_level(score)

        narrative = await gather_outcome(
            self._narrative(inputs, components, score),
            fallback_narrative(score),
            "Risk narrative",
        )

        analysis = RiskScoreAnalysis(
            application_id=application_id,
            overall_score=score,
            risk_level=level,
            components=components,
            risk_factors=list(narrative.value.risk_factors),
            mitigating_factors=list(narrative.value.mitigating_factors),
            justification=narrative.value.justification or f"Risk score {score}/10 calculated using component analysis",
            recommendations=list(narrative.value.recommendations),
            confidence=scoring_confidence(inputs),
            degraded_inputs=inputs.degraded,
        )

        logger.info("Risk score for %s: %.1f/10 (%s)", application_id, score, level.value)
        return analysis

    async def _narrative(
        self,
        inputs: ScoringInputs,
        components: RiskScoreComponents,
        score: float,
    ) -> RiskNarrative:
        banking = inputs.banking.value
        payload = {
            "application": inputs.application.snapshot(),
            "components": components.to_dict(),
            "overall_score": score,
            "documents_submitted": len(inputs.documents.value),
            "discrepancies_found": len(inputs.discrepancies.value.discrepancies),
            "nsf_incidents": banking.overall_summary.total_nsf_incidents if banking else None,
        }
        return await self.inference.infer(TASK_RISK_NARRATIVE, payload, RiskNarrative)

    def heuristic_score(self, application: ApplicationRecord) -> RiskScoreAnalysis:
        """Quick low-confidence score from the application record alone."""
        score = 5.0
        if application.time_in_business is not None and application.time_in_business < 12:
            score += 2
        if application.amount_requested and application.amount_requested > 100_000:
            score += 1
        if application.monthly_revenue is None:
            score += 1
        score = clamp(score, 1, 10)

        return RiskScoreAnalysis(
            application_id=application.id,
            overall_score=score,
            risk_level=risk_level(score),
            components=RiskScoreComponents(score, score, score, score, score),
            risk_factors=["Limited data available for analysis"],
            justification="Heuristic scoring due to limited data availability",
            recommendations=["Gather additional financial documentation"],
            confidence=0.3,
        )
