"""
Tests for Phase 1: Infrastructure & Configuration
Feature: document intelligence & risk scoring

Tests cover:
- IntelligenceSettings environment loading and defaults
- OpenAISettings configuration detection
- Settings validation
- Shared value helpers
"""
import pytest


INTELLIGENCE_VARS = [
    "INTELLIGENCE_INFERENCE_ENABLED",
    "INTELLIGENCE_RESOLVE_CONFLICTS",
    "INTELLIGENCE_SIMILARITY_THRESHOLD",
    "INTELLIGENCE_LOAN_TO_REVENUE_THRESHOLD",
    "INTELLIGENCE_ASSUMED_TERM_MONTHS",
    "INTELLIGENCE_STATEMENT_TEXT_LIMIT",
    "INTELLIGENCE_INFERENCE_TIMEOUT_SECONDS",
    "INTELLIGENCE_DATA_PATH",
]


class TestIntelligenceSettings:
    """Tests for IntelligenceSettings configuration."""

    def test_settings_has_default_values(self, monkeypatch):
        """IntelligenceSettings should fall back to documented defaults."""
        from lendingiq.config import IntelligenceSettings

        for var in INTELLIGENCE_VARS:
            monkeypatch.delenv(var, raising=False)

        settings = IntelligenceSettings.from_env()

        assert settings.inference_enabled is True
        assert settings.resolve_conflicts is True
        assert settings.similarity_threshold == 0.8
        assert settings.loan_to_revenue_threshold == 2.0
        assert settings.assumed_term_months == 60
        assert settings.statement_text_limit == 3000
        assert settings.inference_timeout_seconds == 60

    def test_settings_loads_from_env(self, monkeypatch):
        """IntelligenceSettings should load from environment variables."""
        from lendingiq.config import IntelligenceSettings

        monkeypatch.setenv("INTELLIGENCE_INFERENCE_ENABLED", "false")
        monkeypatch.setenv("INTELLIGENCE_RESOLVE_CONFLICTS", "no")
        monkeypatch.setenv("INTELLIGENCE_SIMILARITY_THRESHOLD", "0.9")
        monkeypatch.setenv("INTELLIGENCE_LOAN_TO_REVENUE_THRESHOLD", "3.5")
        monkeypatch.setenv("INTELLIGENCE_ASSUMED_TERM_MONTHS", "36")
        monkeypatch.setenv("INTELLIGENCE_DATA_PATH", "/tmp/lendingiq-data")

        settings = IntelligenceSettings.from_env()

        assert settings.inference_enabled is False
        assert settings.resolve_conflicts is False
        assert settings.similarity_threshold == 0.9
        assert settings.loan_to_revenue_threshold == 3.5
        assert settings.assumed_term_months == 36
        assert settings.data_path == "/tmp/lendingiq-data"

    def test_empty_env_value_uses_default(self, monkeypatch):
        """An empty variable should behave like an unset one."""
        from lendingiq.config import IntelligenceSettings

        monkeypatch.setenv("INTELLIGENCE_ASSUMED_TERM_MONTHS", "")

        assert IntelligenceSettings.from_env().assumed_term_months == 60


class TestOpenAISettings:
    """Tests for OpenAISettings configuration detection."""

    def test_endpoint_trailing_slash_stripped(self, monkeypatch):
        from lendingiq.config import OpenAISettings

        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com/")

        assert OpenAISettings.from_env().endpoint == "https://example.openai.azure.com"

    def test_configured_with_api_key(self):
        from lendingiq.config import OpenAISettings

        settings = OpenAISettings(
            endpoint="https://example.openai.azure.com",
            deployment_name="gpt-4-1",
            api_key="secret",
        )
        assert settings.is_configured is True

    def test_configured_with_azure_ad(self):
        from lendingiq.config import OpenAISettings

        settings = OpenAISettings(
            endpoint="https://example.openai.azure.com",
            deployment_name="gpt-4-1",
            use_azure_ad=True,
        )
        assert settings.is_configured is True

    def test_not_configured_without_credential(self):
        from lendingiq.config import OpenAISettings

        settings = OpenAISettings(endpoint="https://example.openai.azure.com", deployment_name="gpt-4-1")
        assert settings.is_configured is False


class TestComponentSettings:
    """Components without explicit settings read the environment on first use."""

    def test_settings_loaded_after_construction(self, monkeypatch):
        from unittest.mock import MagicMock

        from lendingiq.intelligence.aggregator import FieldAggregator
        from lendingiq.intelligence.banking import BankingAnalyzer
        from lendingiq.intelligence.discrepancy import DiscrepancyChecker
        from lendingiq.intelligence.risk_scorer import RiskScorer

        monkeypatch.delenv("INTELLIGENCE_ASSUMED_TERM_MONTHS", raising=False)
        components = [
            FieldAggregator(MagicMock(), MagicMock(), MagicMock()),
            DiscrepancyChecker(MagicMock(), MagicMock(), MagicMock()),
            BankingAnalyzer(MagicMock(), MagicMock(), MagicMock()),
            RiskScorer(MagicMock(), MagicMock(), MagicMock(), MagicMock(), MagicMock()),
        ]
        monkeypatch.setenv("INTELLIGENCE_ASSUMED_TERM_MONTHS", "36")

        for component in components:
            assert component.settings.assumed_term_months == 36

    def test_loaded_settings_are_kept(self, monkeypatch):
        from unittest.mock import MagicMock

        from lendingiq.intelligence.aggregator import FieldAggregator

        aggregator = FieldAggregator(MagicMock(), MagicMock(), MagicMock())
        first = aggregator.settings
        monkeypatch.setenv("INTELLIGENCE_RESOLVE_CONFLICTS", "false")

        assert aggregator.settings is first

    def test_explicit_settings_win(self, settings):
        from unittest.mock import MagicMock

        from lendingiq.intelligence.banking import BankingAnalyzer

        assert BankingAnalyzer(MagicMock(), MagicMock(), MagicMock(), settings).settings is settings


class TestValidateSettings:
    """Tests for validate_settings."""

    @pytest.fixture
    def configured_settings(self):
        from lendingiq.config import IntelligenceSettings, OpenAISettings, Settings
        return Settings(
            openai=OpenAISettings(
                endpoint="https://example.openai.azure.com",
                deployment_name="gpt-4-1",
                api_key="secret",
            ),
            intelligence=IntelligenceSettings(),
        )

    def test_valid_settings_have_no_errors(self, configured_settings):
        from lendingiq.config import validate_settings

        assert validate_settings(configured_settings) == []

    def test_inference_enabled_without_openai(self):
        """Enabling inference without Azure OpenAI settings should be reported."""
        from lendingiq.config import Settings, validate_settings

        errors = validate_settings(Settings())

        assert len(errors) == 1
        assert "AZURE_OPENAI_ENDPOINT" in errors[0]

    def test_inference_disabled_needs_no_openai(self):
        from lendingiq.config import IntelligenceSettings, Settings, validate_settings

        settings = Settings(intelligence=IntelligenceSettings(inference_enabled=False))

        assert validate_settings(settings) == []

    def test_out_of_range_thresholds(self, configured_settings):
        from lendingiq.config import validate_settings

        configured_settings.intelligence.similarity_threshold = 1.5
        configured_settings.intelligence.loan_to_revenue_threshold = 0
        configured_settings.intelligence.assumed_term_months = -12

        errors = validate_settings(configured_settings)

        assert len(errors) == 3


class TestValueHelpers:
    """Tests for shared normalisation helpers."""

    @pytest.mark.parametrize("raw,expected", [
        ("  Acme   Inc  ", "acme inc"),
        ("ACME INC.", "acme inc"),
        ("100 King St W, ", "100 king st w"),
        (None, ""),
        (125000, "125000"),
    ])
    def test_normalize_value(self, raw, expected):
        from lendingiq.utils import normalize_value

        assert normalize_value(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("$125,000.00", 125000.0),
        ("Revenue: 1,200,000", 1200000.0),
        (4500, 4500.0),
        ("-250.50 overdrawn", -250.5),
        ("n/a", None),
        (None, None),
        (True, None),
    ])
    def test_first_number(self, raw, expected):
        from lendingiq.utils import first_number

        assert first_number(raw) == expected

    def test_clamp(self):
        from lendingiq.utils import clamp

        assert clamp(12, 0, 10) == 10
        assert clamp(-1, 0, 10) == 0
        assert clamp(4.5, 0, 10) == 4.5
