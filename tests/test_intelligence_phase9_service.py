"""
Tests for Phase 9: Service Wiring
Feature: document intelligence & risk scoring

Tests cover:
- Inference client selection from settings
- Component wiring with shared collaborators
- End-to-end scoring over a file-backed store
"""
import json

import pytest

from lendingiq.config import IntelligenceSettings, OpenAISettings, Settings


STATEMENT = """TD Canada Trust
Business Chequing Account Statement
Account #: 55501234
Jan 03, 2024  Opening balance  $4,000.00
Jan 18, 2024  Deposit  $2,500.00  $6,500.00
Feb 02, 2024  NSF Fee  $48.00  -$150.00
Feb 21, 2024  Deposit  $3,000.00  $2,850.00
Mar 04, 2024  Withdrawal  $1,000.00  $1,850.00
"""


def _configured_openai():
    return OpenAISettings(
        endpoint="https://example.openai.azure.com",
        api_key="key",
        deployment_name="gpt-4.1",
    )


class TestBuildInferenceClient:
    """Tests for build_inference_client."""

    def test_disabled_by_settings(self):
        from lendingiq.intelligence.inference import DisabledInferenceClient
        from lendingiq.intelligence.service import build_inference_client

        settings = Settings(
            openai=_configured_openai(),
            intelligence=IntelligenceSettings(inference_enabled=False),
        )

        client = build_inference_client(settings)

        assert isinstance(client, DisabledInferenceClient)
        assert client.reason == "inference is disabled"

    def test_unconfigured_openai_disables_inference(self):
        from lendingiq.intelligence.inference import DisabledInferenceClient
        from lendingiq.intelligence.service import build_inference_client

        client = build_inference_client(Settings())

        assert isinstance(client, DisabledInferenceClient)
        assert "not configured" in client.reason

    def test_configured_openai(self):
        from lendingiq.intelligence.inference import OpenAIInferenceClient
        from lendingiq.intelligence.service import build_inference_client

        settings = Settings(
            openai=_configured_openai(),
            intelligence=IntelligenceSettings(inference_timeout_seconds=15),
        )

        client = build_inference_client(settings)

        assert isinstance(client, OpenAIInferenceClient)
        assert client.timeout == 15
        assert client.settings is settings.openai


class TestBuildIntelligenceServices:
    """Tests for build_intelligence_services."""

    def test_components_share_collaborators(self, store, field_extractor, text_extractor, inference):
        from lendingiq.intelligence.service import build_intelligence_services

        services = build_intelligence_services(
            Settings(),
            store=store,
            text_extractor=text_extractor,
            field_extractor=field_extractor,
            inference=inference,
        )

        assert services.aggregator.store is store
        assert services.aggregator.field_extractor is field_extractor
        assert services.discrepancy_checker.aggregator is services.aggregator
        assert services.banking_analyzer.text_extractor is text_extractor
        assert services.nsf_analyzer.banking_analyzer is services.banking_analyzer
        assert services.risk_scorer.aggregator is services.aggregator
        assert services.risk_scorer.discrepancy_checker is services.discrepancy_checker
        assert services.risk_scorer.inference is inference

    def test_defaults_use_data_path(self, tmp_path):
        from lendingiq.intelligence.field_extractor import PatternFieldExtractor
        from lendingiq.intelligence.inference import DisabledInferenceClient
        from lendingiq.intelligence.service import build_intelligence_services
        from lendingiq.intelligence.storage import JsonDocumentStore

        settings = Settings(intelligence=IntelligenceSettings(data_path=str(tmp_path)))

        services = build_intelligence_services(settings)

        assert isinstance(services.aggregator.store, JsonDocumentStore)
        assert services.aggregator.store.base_path == tmp_path
        assert isinstance(services.aggregator.field_extractor, PatternFieldExtractor)
        assert isinstance(services.risk_scorer.inference, DisabledInferenceClient)
        assert services.risk_scorer.settings is settings.intelligence


class TestEndToEnd:
    """Scoring an application stored as JSON files, without inference."""

    @pytest.fixture
    def services(self, tmp_path):
        from lendingiq.intelligence.service import build_intelligence_services
        from lendingiq.intelligence.storage import JsonDocumentStore

        store = JsonDocumentStore(tmp_path)
        store.save_application({
            "id": "app-1",
            "legalBusinessName": "Acme Inc",
            "amountRequested": 500000,
            "monthlyRevenue": 0,
        })
        store.save_document({
            "id": "doc-bank",
            "applicationId": "app-1",
            "fileName": "td_statement_q1.pdf",
            "uploadedAt": "2024-04-01T10:00:00",
            "metadata": {"extracted_text": STATEMENT},
        })
        store.save_document({
            "id": "doc-articles",
            "applicationId": "app-1",
            "fileName": "articles_of_incorporation.pdf",
            "uploadedAt": "2024-04-01T10:05:00",
            "metadata": {"extracted_text": "Articles of Incorporation"},
        })

        settings = Settings(intelligence=IntelligenceSettings(
            data_path=str(tmp_path), inference_enabled=False,
        ))
        return build_intelligence_services(settings)

    @pytest.mark.asyncio
    async def test_score_with_inference_disabled(self, services):
        from lendingiq.intelligence.constants import RiskLevel

        analysis = await services.risk_scorer.score("app-1")

        assert analysis.degraded_inputs == []
        assert analysis.components.financial_risk == 9.0
        assert analysis.components.banking_risk == 8.0
        assert analysis.risk_level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH)
        assert analysis.risk_factors == ["Narrative analysis unavailable - manual review required"]

    @pytest.mark.asyncio
    async def test_banking_analysis_is_persisted(self, services, tmp_path):
        await services.banking_analyzer.analyze("doc-bank")

        with open(tmp_path / "documents" / "doc-bank.json", encoding="utf-8") as f:
            saved = json.load(f)

        blob = saved["metadata"]["banking_analysis"]
        assert blob["overall_summary"]["total_nsf_incidents"] == 1
        assert saved["metadata"]["extracted_text"] == STATEMENT

    @pytest.mark.asyncio
    async def test_nsf_trend_from_stored_statement(self, services):
        from lendingiq.intelligence.constants import NSFSeverity

        analysis = await services.nsf_analyzer.analyze("doc-bank")

        assert analysis.total_months == 3
        assert analysis.overall_summary.total_nsf_incidents == 1
        assert analysis.overall_summary.peak_nsf_month == "Feb 2024"
        assert analysis.overall_summary.severity is NSFSeverity.LOW
