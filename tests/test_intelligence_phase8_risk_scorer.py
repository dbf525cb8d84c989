"""
Tests for Phase 8: Risk Scoring
Feature: document intelligence & risk scoring

Tests cover:
- Outcome wrapper for fault-tolerant sub-calls
- Component scoring rules
- Weighted overall score and risk level bands
- End-to-end scoring with degraded inputs
- Narrative fallback and heuristic scoring
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from lendingiq.intelligence.constants import CashflowTrend, RiskLevel, Severity
from lendingiq.intelligence.models import ApplicationRecord


class TestOutcome:
    """Tests for gather_outcome."""

    @pytest.mark.asyncio
    async def test_success(self):
        from lendingiq.intelligence.outcome import gather_outcome

        async def work():
            return 42

        outcome = await gather_outcome(work(), 0, "Work")

        assert outcome.value == 42
        assert outcome.succeeded is True
        assert outcome.reason is None

    @pytest.mark.asyncio
    async def test_pipeline_error_degrades(self):
        from lendingiq.intelligence.errors import ExtractionUnavailableError
        from lendingiq.intelligence.outcome import gather_outcome

        async def work():
            raise ExtractionUnavailableError("doc-1", "scan only")

        outcome = await gather_outcome(work(), None, "Banking analysis")

        assert outcome.value is None
        assert outcome.degraded is True
        assert "scan only" in outcome.reason

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades(self):
        from lendingiq.intelligence.outcome import gather_outcome

        async def work():
            raise KeyError("months")

        outcome = await gather_outcome(work(), [], "Banking analysis")

        assert outcome.value == []
        assert outcome.reason.startswith("KeyError")


class TestComponentRules:
    """Tests for the five component scoring rules."""

    @pytest.mark.parametrize("months,industry,amount,expected", [
        (72, None, None, 3.0),
        (30, None, None, 4.0),
        (18, None, None, 5.0),
        (6, None, None, 7.0),
        (None, None, None, 5.0),
        (72, "Full-Service Restaurant", None, 4.0),
        (24, None, 500000, 5.0),
        (6, "Construction", 500000, 9.0),
    ])
    def test_business_risk(self, months, industry, amount, expected):
        from lendingiq.intelligence.risk_scorer import business_risk

        application = ApplicationRecord(
            id="app-1", time_in_business=months, industry=industry, amount_requested=amount,
        )

        assert business_risk(application) == expected

    @pytest.mark.parametrize("revenue,amount,expected", [
        (120000, 100000, 2.0),
        (60000, 100000, 3.0),
        (20000, 500000, 7.0),
        (5000, 100000, 9.0),
        (None, 100000, 6.0),
        (0, 500000, 9.0),
    ])
    def test_financial_risk(self, revenue, amount, expected):
        from lendingiq.intelligence.aggregator import AggregatedFields
        from lendingiq.intelligence.risk_scorer import financial_risk

        application = ApplicationRecord(id="app-1", monthly_revenue=revenue, amount_requested=amount)

        assert financial_risk(application, AggregatedFields.empty("app-1"), 60) == expected

    @pytest.mark.parametrize("last_year,ytd,expected", [
        ("$1,000,000", "$1,300,000", 4.0),
        ("$1,000,000", "$500,000", 6.0),
        ("$1,000,000", "$1,000,000", 5.0),
        ("$1,000,000", None, 5.0),
        ("0", "$100,000", 5.0),
    ])
    def test_financial_risk_revenue_growth(self, last_year, ytd, expected):
        from lendingiq.intelligence.aggregator import AggregatedFields
        from lendingiq.intelligence.risk_scorer import financial_risk

        consensus = {"Revenue Last Year": last_year}
        if ytd is not None:
            consensus["Revenue YTD"] = ytd
        aggregation = AggregatedFields(application_id="app-1", consensus_fields=consensus)
        application = ApplicationRecord(id="app-1", monthly_revenue=20000)

        assert financial_risk(application, aggregation, 60) == expected

    def test_document_risk(self):
        from lendingiq.intelligence.discrepancy import DiscrepancyReport, FieldDiscrepancy
        from lendingiq.intelligence.risk_scorer import document_risk

        clean = DiscrepancyReport(application_id="app-1")
        many = DiscrepancyReport(
            application_id="app-1",
            overall_risk=Severity.CRITICAL,
            discrepancies=[
                FieldDiscrepancy("Business Name", "a", "b", "doc.pdf", Severity.CRITICAL, "d", "s")
            ] * 8,
        )

        assert document_risk(5, clean) == 3.0
        assert document_risk(3, clean) == 4.0
        assert document_risk(2, DiscrepancyReport.unavailable("app-1")) == 7.0
        assert document_risk(2, many) == 10.0

    def test_banking_risk(self):
        from lendingiq.intelligence.banking import BankingAnalysis, BankingSummary
        from lendingiq.intelligence.risk_scorer import banking_risk

        def analysis(**summary):
            return BankingAnalysis("doc-1", "statement.pdf", [], BankingSummary(**summary))

        assert banking_risk(None) == 6.0
        assert banking_risk(analysis(
            total_nsf_incidents=0, overdraft_frequency=2.0,
            cashflow_trend=CashflowTrend.IMPROVING, average_monthly_balance=60000,
        )) == 1.0
        assert banking_risk(analysis(
            total_nsf_incidents=1, overdraft_frequency=12.0,
            cashflow_trend=CashflowTrend.STABLE, average_monthly_balance=20000,
        )) == 7.0
        assert banking_risk(analysis(
            total_nsf_incidents=4, overdraft_frequency=25.0,
            cashflow_trend=CashflowTrend.DECLINING, average_monthly_balance=1000,
        )) == 10.0

    def test_compliance_risk(self):
        from lendingiq.intelligence.aggregator import AggregatedFields
        from lendingiq.intelligence.risk_scorer import compliance_risk

        empty = AggregatedFields.empty("app-1")
        complete = ApplicationRecord(
            id="app-1", legal_business_name="Acme Inc", gst_number="123456789RT0001",
            use_of_funds="Purchase of two delivery vans",
        )
        vague = ApplicationRecord(id="app-1", legal_business_name="Acme Inc", use_of_funds="Growth")
        gst_from_documents = AggregatedFields(application_id="app-1", consensus_fields={"GST Number": "123"})

        assert compliance_risk(complete, empty) == 3.0
        assert compliance_risk(vague, empty) == 5.0
        assert compliance_risk(vague, gst_from_documents) == 4.0
        assert compliance_risk(ApplicationRecord(id="app-1"), empty) == 6.0


class TestOverallScore:
    """Tests for weighting and risk level bands."""

    def test_weighted_sum(self):
        from lendingiq.intelligence.risk_scorer import RiskScoreComponents, overall_score

        assert overall_score(RiskScoreComponents(5, 5, 5, 5, 5)) == 5.0
        assert overall_score(RiskScoreComponents(0, 0, 0, 0, 0)) == 0.0
        assert overall_score(RiskScoreComponents(10, 10, 10, 10, 10)) == 10.0
        assert overall_score(RiskScoreComponents(4, 8, 2, 6, 2)) == 5.1
        assert overall_score(RiskScoreComponents(3, 3, 3, 3, 5)) == 3.1

    @pytest.mark.parametrize("score,expected", [
        (0.0, RiskLevel.VERY_LOW),
        (2.0, RiskLevel.VERY_LOW),
        (2.1, RiskLevel.LOW),
        (4.0, RiskLevel.LOW),
        (4.1, RiskLevel.MEDIUM),
        (6.0, RiskLevel.MEDIUM),
        (6.1, RiskLevel.HIGH),
        (8.0, RiskLevel.HIGH),
        (8.1, RiskLevel.VERY_HIGH),
        (10.0, RiskLevel.VERY_HIGH),
    ])
    def test_risk_level_bands(self, score, expected):
        from lendingiq.intelligence.risk_scorer import risk_level

        assert risk_level(score) is expected

    def test_fallback_narrative_mentions_score(self):
        from lendingiq.intelligence.risk_scorer import fallback_narrative

        narrative = fallback_narrative(6.7)

        assert narrative.justification == "Risk score 6.7/10 calculated using quantitative component analysis"
        assert narrative.recommendations == ["Conduct manual risk review"]


class TestRiskScorer:
    """Tests for RiskScorer.score."""

    @pytest.fixture
    def build_scorer(self, store, text_extractor, field_extractor, inference, settings):
        from lendingiq.intelligence.aggregator import FieldAggregator
        from lendingiq.intelligence.banking import BankingAnalyzer
        from lendingiq.intelligence.discrepancy import DiscrepancyChecker
        from lendingiq.intelligence.risk_scorer import RiskScorer

        def _build(discrepancy_checker=None):
            aggregator = FieldAggregator(store, field_extractor, inference, settings)
            checker = discrepancy_checker or DiscrepancyChecker(store, aggregator, inference, settings)
            banking = BankingAnalyzer(store, text_extractor, inference, settings)
            return RiskScorer(store, aggregator, checker, banking, inference, settings)
        return _build

    @pytest.fixture
    def thin_application(self, store, make_document):
        """Large loan, zero revenue, two documents, no banking statement."""
        store.add_application(ApplicationRecord(id="app-1", amount_requested=500000, monthly_revenue=0))
        store.add_document(make_document("doc-1", file_name="articles.pdf"))
        store.add_document(make_document("doc-2", file_name="lease.pdf"))

    @pytest.mark.asyncio
    async def test_missing_application_raises(self, build_scorer):
        from lendingiq.intelligence.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await build_scorer().score("app-missing")

    @pytest.mark.asyncio
    async def test_thin_application_scores_high(self, build_scorer, thin_application):
        analysis = await build_scorer().score("app-1")
        components = analysis.components

        assert components.business_risk == 5.0
        assert components.financial_risk == 9.0
        assert components.document_risk == 6.0
        assert components.banking_risk == 6.0
        assert components.compliance_risk == 6.0
        assert 6.0 < analysis.overall_score <= 10.0
        assert analysis.risk_level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH)
        assert analysis.degraded_inputs == []

    @pytest.mark.asyncio
    async def test_narrative_fallback_when_inference_unavailable(self, build_scorer, thin_application, inference):
        analysis = await build_scorer().score("app-1")

        assert "risk_narrative" in inference.tasks()
        assert analysis.risk_factors == ["Narrative analysis unavailable - manual review required"]
        assert analysis.justification == (
            f"Risk score {analysis.overall_score}/10 calculated using quantitative component analysis"
        )
        assert analysis.recommendations == ["Conduct manual risk review"]

    @pytest.mark.asyncio
    async def test_confidence_reflects_available_inputs(self, build_scorer, thin_application):
        analysis = await build_scorer().score("app-1")

        # known revenue and processed documents
        assert analysis.confidence == 0.6

    @pytest.mark.asyncio
    async def test_banking_statement_and_narrative(
        self, build_scorer, store, text_extractor, inference, make_document
    ):
        from lendingiq.intelligence.inference import TASK_REFINE_MONTHLY_STATS, TASK_RISK_NARRATIVE

        store.add_application(ApplicationRecord(
            id="app-1", legal_business_name="Acme Inc", amount_requested=100000,
            monthly_revenue=120000, time_in_business=84, gst_number="123456789RT0001",
            use_of_funds="Purchase of two delivery vans",
        ))
        for name in ["articles.pdf", "bank_statement_q1.pdf", "bank_statement_q2.pdf", "t2.pdf", "noa.pdf"]:
            store.add_document(make_document(name.split(".")[0], file_name=name))
        text_extractor.texts["bank_statement_q1"] = "Statement"
        inference.responses[TASK_REFINE_MONTHLY_STATS] = {"monthly_stats": [
            {"month": m, "year": 2024, "min_balance": 50000, "max_balance": 90000}
            for m in ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
        ]}
        inference.responses[TASK_RISK_NARRATIVE] = {
            "risk_factors": [],
            "mitigating_factors": ["Seven years in business", "Strong cash reserves"],
            "justification": "Established business with strong banking history",
            "recommendations": ["Approve at standard terms"],
        }

        analysis = await build_scorer().score("app-1")

        assert analysis.components.banking_risk == 2.0
        assert analysis.components.business_risk == 3.0
        assert analysis.components.financial_risk == 2.0
        assert analysis.components.compliance_risk == 3.0
        assert analysis.risk_level in (RiskLevel.VERY_LOW, RiskLevel.LOW)
        assert analysis.mitigating_factors == ["Seven years in business", "Strong cash reserves"]
        assert analysis.justification == "Established business with strong banking history"
        assert analysis.confidence == 1.0
        narrative_payload = dict(inference.calls)[TASK_RISK_NARRATIVE]
        assert narrative_payload["nsf_incidents"] == 0
        assert narrative_payload["documents_submitted"] == 5

    @pytest.mark.asyncio
    async def test_unreadable_statement_counts_as_no_banking_data(
        self, build_scorer, store, make_document
    ):
        store.add_application(ApplicationRecord(id="app-1", monthly_revenue=30000))
        store.add_document(make_document("doc-bank", file_name="bank_statement.pdf"))

        analysis = await build_scorer().score("app-1")

        assert analysis.components.banking_risk == 6.0
        assert analysis.degraded_inputs == ["banking"]

    @pytest.mark.asyncio
    async def test_failed_discrepancy_check_uses_stand_in(self, build_scorer, thin_application):
        checker = MagicMock()
        checker.check = AsyncMock(side_effect=RuntimeError("comparison crashed"))

        analysis = await build_scorer(discrepancy_checker=checker).score("app-1")

        # 5 base + 2 for fewer than 3 documents, medium stand-in tier adds nothing
        assert analysis.components.document_risk == 7.0
        assert analysis.degraded_inputs == ["discrepancies"]

    @pytest.mark.asyncio
    async def test_document_listing_failure_still_scores(self, build_scorer, thin_application, store):
        store.fail_listing = True

        analysis = await build_scorer().score("app-1")

        assert analysis.degraded_inputs == ["documents", "aggregation", "discrepancies"]
        assert analysis.components.banking_risk == 6.0
        assert 0.0 <= analysis.overall_score <= 10.0
        assert analysis.confidence == 0.5

    @pytest.mark.asyncio
    async def test_to_dict(self, build_scorer, thin_application):
        analysis = await build_scorer().score("app-1")

        data = analysis.to_dict()

        assert data["risk_level"] in ("high", "very-high")
        assert set(data["components"]) == {
            "business_risk", "financial_risk", "document_risk", "banking_risk", "compliance_risk",
        }


class TestHeuristicScore:
    """Tests for RiskScorer.heuristic_score."""

    @pytest.fixture
    def scorer(self, settings):
        from lendingiq.intelligence.risk_scorer import RiskScorer
        return RiskScorer(MagicMock(), MagicMock(), MagicMock(), MagicMock(), MagicMock(), settings)

    def test_young_business_large_loan_unknown_revenue(self, scorer):
        analysis = scorer.heuristic_score(ApplicationRecord(
            id="app-1", time_in_business=6, amount_requested=250000,
        ))

        assert analysis.overall_score == 9.0
        assert analysis.risk_level is RiskLevel.VERY_HIGH
        assert analysis.confidence == 0.3
        assert analysis.components.banking_risk == 9.0

    def test_established_business(self, scorer):
        analysis = scorer.heuristic_score(ApplicationRecord(
            id="app-1", time_in_business=48, amount_requested=50000, monthly_revenue=40000,
        ))

        assert analysis.overall_score == 5.0
        assert analysis.risk_level is RiskLevel.MEDIUM
        assert analysis.justification == "Heuristic scoring due to limited data availability"
