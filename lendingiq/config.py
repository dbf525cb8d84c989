"""
Configuration for LendingIQ.

Settings are plain dataclasses populated from environment variables. A local
``.env`` file is honoured when settings are loaded through ``load_settings``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_DATA_PATH = Path(__file__).parent.parent / "data"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass
class OpenAISettings:
    """Azure OpenAI / Foundry connection settings."""
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    deployment_name: Optional[str] = None
    model_name: str = "gpt-4.1"
    api_version: str = "2024-10-21"
    use_azure_ad: bool = False

    # Secondary endpoint used when the primary is rate limited
    fallback_endpoint: Optional[str] = None
    fallback_api_key: Optional[str] = None
    fallback_deployment_name: Optional[str] = None
    fallback_api_version: Optional[str] = None
    fallback_use_azure_ad: bool = False

    # Smaller deployment tried last
    chat_deployment_name: Optional[str] = None
    chat_model_name: Optional[str] = None
    chat_api_version: Optional[str] = None

    @classmethod
    def from_env(cls) -> "OpenAISettings":
        endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        fallback_endpoint = os.getenv("AZURE_OPENAI_FALLBACK_ENDPOINT")
        return cls(
            endpoint=endpoint.rstrip("/") if endpoint else None,
            api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME"),
            model_name=os.getenv("AZURE_OPENAI_MODEL_NAME", "gpt-4.1"),
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21"),
            use_azure_ad=_env_bool("AZURE_OPENAI_USE_AZURE_AD", False),
            fallback_endpoint=fallback_endpoint.rstrip("/") if fallback_endpoint else None,
            fallback_api_key=os.getenv("AZURE_OPENAI_FALLBACK_API_KEY"),
            fallback_deployment_name=os.getenv("AZURE_OPENAI_FALLBACK_DEPLOYMENT_NAME"),
            fallback_api_version=os.getenv("AZURE_OPENAI_FALLBACK_API_VERSION"),
            fallback_use_azure_ad=_env_bool("AZURE_OPENAI_FALLBACK_USE_AZURE_AD", False),
            chat_deployment_name=os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT_NAME"),
            chat_model_name=os.getenv("AZURE_OPENAI_CHAT_MODEL_NAME"),
            chat_api_version=os.getenv("AZURE_OPENAI_CHAT_API_VERSION"),
        )

    @property
    def is_configured(self) -> bool:
        """True when an endpoint, deployment and credential are all present."""
        has_credential = self.use_azure_ad or bool(self.api_key)
        return bool(self.endpoint and self.deployment_name and has_credential)


@dataclass
class IntelligenceSettings:
    """Settings for the document intelligence and risk scoring pipeline."""
    inference_enabled: bool = True
    resolve_conflicts: bool = True
    similarity_threshold: float = 0.8
    loan_to_revenue_threshold: float = 2.0
    assumed_term_months: int = 60
    statement_text_limit: int = 3000
    inference_timeout_seconds: int = 60
    data_path: str = str(DEFAULT_DATA_PATH)

    @classmethod
    def from_env(cls) -> "IntelligenceSettings":
        return cls(
            inference_enabled=_env_bool("INTELLIGENCE_INFERENCE_ENABLED", True),
            resolve_conflicts=_env_bool("INTELLIGENCE_RESOLVE_CONFLICTS", True),
            similarity_threshold=_env_float("INTELLIGENCE_SIMILARITY_THRESHOLD", 0.8),
            loan_to_revenue_threshold=_env_float("INTELLIGENCE_LOAN_TO_REVENUE_THRESHOLD", 2.0),
            assumed_term_months=_env_int("INTELLIGENCE_ASSUMED_TERM_MONTHS", 60),
            statement_text_limit=_env_int("INTELLIGENCE_STATEMENT_TEXT_LIMIT", 3000),
            inference_timeout_seconds=_env_int("INTELLIGENCE_INFERENCE_TIMEOUT_SECONDS", 60),
            data_path=os.getenv("INTELLIGENCE_DATA_PATH", str(DEFAULT_DATA_PATH)),
        )


@dataclass
class Settings:
    """Top-level settings aggregate."""
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    intelligence: IntelligenceSettings = field(default_factory=IntelligenceSettings)


def load_settings() -> Settings:
    """Load all settings from the environment (and ``.env`` if present)."""
    load_dotenv()
    return Settings(
        openai=OpenAISettings.from_env(),
        intelligence=IntelligenceSettings.from_env(),
    )


def validate_settings(settings: Settings) -> List[str]:
    """
    Check settings for problems.

    Returns:
        List of human-readable error messages (empty when valid)
    """
    errors: List[str] = []
    intel = settings.intelligence

    if intel.inference_enabled and not settings.openai.is_configured:
        errors.append(
            "Inference is enabled but Azure OpenAI is not configured. "
            "Set AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_DEPLOYMENT_NAME and "
            "AZURE_OPENAI_API_KEY (or AZURE_OPENAI_USE_AZURE_AD=true)."
        )
    if not 0.0 < intel.similarity_threshold <= 1.0:
        errors.append("INTELLIGENCE_SIMILARITY_THRESHOLD must be in (0, 1].")
    if intel.loan_to_revenue_threshold <= 0:
        errors.append("INTELLIGENCE_LOAN_TO_REVENUE_THRESHOLD must be positive.")
    if intel.assumed_term_months <= 0:
        errors.append("INTELLIGENCE_ASSUMED_TERM_MONTHS must be positive.")
    if intel.statement_text_limit <= 0:
        errors.append("INTELLIGENCE_STATEMENT_TEXT_LIMIT must be positive.")

    return errors
