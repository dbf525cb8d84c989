"""
Wiring for the document intelligence components.

Builds every analyzer from settings so they share one store, one text
extractor and one inference client.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import Settings
from ..utils import setup_logging
from .aggregator import FieldAggregator
from .banking import BankingAnalyzer
from .discrepancy import DiscrepancyChecker
from .field_extractor import FieldExtractor, PatternFieldExtractor
from .inference import DisabledInferenceClient, InferenceClient, OpenAIInferenceClient
from .nsf import NSFTrendAnalyzer
from .risk_scorer import RiskScorer
from .storage import DocumentStore, JsonDocumentStore
from .text_extraction import StoredTextExtractor, TextExtractor

logger = setup_logging()


@dataclass
class IntelligenceServices:
    aggregator: FieldAggregator
    discrepancy_checker: DiscrepancyChecker
    banking_analyzer: BankingAnalyzer
    nsf_analyzer: NSFTrendAnalyzer
    risk_scorer: RiskScorer


def build_inference_client(settings: Settings) -> InferenceClient:
    """OpenAI-backed client when enabled and configured, else a disabled one."""
    if not settings.intelligence.inference_enabled:
        return DisabledInferenceClient("inference is disabled")
    if not settings.openai.is_configured:
        logger.warning("Azure OpenAI is not configured; inference enhancements are disabled")
        return DisabledInferenceClient("Azure OpenAI is not configured")
    return OpenAIInferenceClient(
        settings.openai,
        timeout=settings.intelligence.inference_timeout_seconds,
    )


def build_intelligence_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    text_extractor: Optional[TextExtractor] = None,
    field_extractor: Optional[FieldExtractor] = None,
    inference: Optional[InferenceClient] = None,
) -> IntelligenceServices:
    """
    Create all components for the given settings.

    Args:
        settings: Loaded settings
        store: Document store (defaults to a JsonDocumentStore at data_path)
        text_extractor: Text extraction capability (defaults to StoredTextExtractor)
        field_extractor: Field extraction capability (defaults to PatternFieldExtractor)
        inference: Inference capability (defaults from settings)
    """
    intel = settings.intelligence
    data_path = Path(intel.data_path)

    store = store or JsonDocumentStore(data_path)
    text_extractor = text_extractor or StoredTextExtractor(data_path)
    field_extractor = field_extractor or PatternFieldExtractor(text_extractor)
    inference = inference or build_inference_client(settings)

    aggregator = FieldAggregator(store, field_extractor, inference, intel)
    discrepancy_checker = DiscrepancyChecker(store, aggregator, inference, intel)
    banking_analyzer = BankingAnalyzer(store, text_extractor, inference, intel)

    return IntelligenceServices(
        aggregator=aggregator,
        discrepancy_checker=discrepancy_checker,
        banking_analyzer=banking_analyzer,
        nsf_analyzer=NSFTrendAnalyzer(banking_analyzer),
        risk_scorer=RiskScorer(store, aggregator, discrepancy_checker, banking_analyzer, inference, intel),
    )
