"""
Document Intelligence & Risk Scoring

Aggregates fields extracted from loan application documents, checks them
against the application, analyzes banking statements and NSF history, and
produces a weighted risk score.
"""

from lendingiq.intelligence.constants import (
    CashflowTrend,
    ExtractionMethod,
    NSFConsistency,
    NSFSeverity,
    NSFTrend,
    RiskLevel,
    Severity,
    TrendDirection,
)
from lendingiq.intelligence.errors import (
    ExtractionUnavailableError,
    InferenceUnavailableError,
    IntelligenceError,
    NotFoundError,
    PersistenceError,
)
from lendingiq.intelligence.models import ApplicationRecord, Document, ExtractedField, FieldEntry
from lendingiq.intelligence.outcome import Outcome, gather_outcome

# Collaborators
from lendingiq.intelligence.storage import DocumentStore, JsonDocumentStore
from lendingiq.intelligence.text_extraction import StoredTextExtractor, TextExtractor
from lendingiq.intelligence.field_extractor import FieldExtractor, PatternFieldExtractor
from lendingiq.intelligence.inference import (
    DisabledInferenceClient,
    InferenceClient,
    OpenAIInferenceClient,
)
from lendingiq.intelligence.doc_classifier import LoanDocClassifier

# Components
from lendingiq.intelligence.aggregator import (
    AggregatedFields,
    ConflictSummary,
    FieldAggregator,
    FieldConflict,
)
from lendingiq.intelligence.discrepancy import DiscrepancyChecker, DiscrepancyReport, FieldDiscrepancy
from lendingiq.intelligence.banking import (
    BankingAnalysis,
    BankingAnalyzer,
    BankingSummary,
    BatchBankingResult,
    MonthlyBankStats,
)
from lendingiq.intelligence.nsf import NSFTrendAnalysis, NSFTrendAnalyzer
from lendingiq.intelligence.risk_scorer import RiskScoreAnalysis, RiskScoreComponents, RiskScorer
from lendingiq.intelligence.service import IntelligenceServices, build_intelligence_services

__all__ = [
    "CashflowTrend",
    "ExtractionMethod",
    "NSFConsistency",
    "NSFSeverity",
    "NSFTrend",
    "RiskLevel",
    "Severity",
    "TrendDirection",
    "ExtractionUnavailableError",
    "InferenceUnavailableError",
    "IntelligenceError",
    "NotFoundError",
    "PersistenceError",
    "ApplicationRecord",
    "Document",
    "ExtractedField",
    "FieldEntry",
    "Outcome",
    "gather_outcome",
    "DocumentStore",
    "JsonDocumentStore",
    "StoredTextExtractor",
    "TextExtractor",
    "FieldExtractor",
    "PatternFieldExtractor",
    "DisabledInferenceClient",
    "InferenceClient",
    "OpenAIInferenceClient",
    "LoanDocClassifier",
    "AggregatedFields",
    "ConflictSummary",
    "FieldAggregator",
    "FieldConflict",
    "DiscrepancyChecker",
    "DiscrepancyReport",
    "FieldDiscrepancy",
    "BankingAnalysis",
    "BankingAnalyzer",
    "BankingSummary",
    "BatchBankingResult",
    "MonthlyBankStats",
    "NSFTrendAnalysis",
    "NSFTrendAnalyzer",
    "RiskScoreAnalysis",
    "RiskScoreComponents",
    "RiskScorer",
    "IntelligenceServices",
    "build_intelligence_services",
]
