"""
Constants and enums for document intelligence and risk scoring.
"""

from enum import Enum


class ExtractionMethod(str, Enum):
    """How a field value was extracted from a document."""
    PATTERN = "pattern"
    INFERENCE = "inference"
    MANUAL = "manual"


class Severity(str, Enum):
    """Severity of a field conflict or discrepancy."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ComparisonStrategy(str, Enum):
    """How an application value is compared to a document value."""
    FUZZY_STRING = "fuzzy_string"
    NUMERIC_RATIO = "numeric_ratio"


class CashflowTrend(str, Enum):
    """Coarse banking cashflow direction."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class NSFSeverity(str, Enum):
    """Overall NSF severity tier."""
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NSFTrend(str, Enum):
    """NSF trend over a period."""
    IMPROVING = "IMPROVING"
    WORSENING = "WORSENING"
    STABLE = "STABLE"


class TrendDirection(str, Enum):
    """Direction of NSF counts from first to last month."""
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"


class NSFConsistency(str, Enum):
    """Regularity of monthly NSF counts."""
    CONSISTENT = "CONSISTENT"
    VOLATILE = "VOLATILE"
    SPORADIC = "SPORADIC"


class RiskLevel(str, Enum):
    """Overall risk level for a scored application."""
    VERY_LOW = "very-low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very-high"


# Ordinal ranks used for comparisons and monotonicity checks
SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

NSF_SEVERITY_RANK = {
    NSFSeverity.LOW: 0,
    NSFSeverity.MODERATE: 1,
    NSFSeverity.HIGH: 2,
    NSFSeverity.CRITICAL: 3,
}


# Document field labels
FIELD_BUSINESS_NAME = "Business Name"
FIELD_GST_NUMBER = "GST Number"
FIELD_SIN = "SIN"
FIELD_BUSINESS_ADDRESS = "Business Address"
FIELD_REVENUE_LAST_YEAR = "Revenue Last Year"
FIELD_REVENUE_YTD = "Revenue YTD"
FIELD_ACCOUNT_NUMBER = "Account Number"
FIELD_BANK_NAME = "Bank Name"

# Identity-critical labels
CRITICAL_CONFLICT_FIELDS = frozenset({FIELD_BUSINESS_NAME, FIELD_GST_NUMBER, FIELD_SIN})

# Financially material labels
HIGH_CONFLICT_FIELDS = frozenset({FIELD_BUSINESS_ADDRESS, FIELD_REVENUE_LAST_YEAR, FIELD_ACCOUNT_NUMBER})

LOW_CONFIDENCE_THRESHOLD = 0.5

CONFLICT_RECOMMENDATIONS = {
    FIELD_BUSINESS_NAME: "Verify legal business name with incorporation documents",
    FIELD_BUSINESS_ADDRESS: "Confirm current business address with recent utility bill or lease agreement",
    FIELD_GST_NUMBER: "Validate GST number with Canada Revenue Agency records",
    FIELD_REVENUE_LAST_YEAR: "Cross-reference with tax returns and financial statements",
}


# Discrepancy checks
DEFAULT_SIMILARITY_THRESHOLD = 0.8
DEFAULT_LOAN_TO_REVENUE_THRESHOLD = 2.0
DISCREPANCY_CONFIDENCE_FLOOR = 0.3


# Banking statement analysis
DAYS_PER_MONTH = 30
CASHFLOW_TREND_DEADBAND = 0.10
OVERDRAFT_FLAG_PERCENT = 10.0
NEGATIVE_BALANCE_FLAG = -1000.0


# NSF severity thresholds: (average per month, total incidents)
NSF_CRITICAL_THRESHOLDS = (3.0, 15)
NSF_HIGH_THRESHOLDS = (1.5, 8)
NSF_MODERATE_THRESHOLDS = (0.5, 3)

NSF_DAYS_PER_INCIDENT = 1.5
NSF_CONSECUTIVE_MIN_COUNT = 3
NSF_CONSISTENT_CV = 0.5
NSF_VOLATILE_CV = 1.0


# Risk scoring
RISK_COMPONENT_WEIGHTS = {
    "business_risk": 0.25,
    "financial_risk": 0.30,
    "document_risk": 0.20,
    "banking_risk": 0.20,
    "compliance_risk": 0.05,
}

# Upper bound (inclusive) of each risk level
RISK_LEVEL_BANDS = (
    (2.0, RiskLevel.VERY_LOW),
    (4.0, RiskLevel.LOW),
    (6.0, RiskLevel.MEDIUM),
    (8.0, RiskLevel.HIGH),
)

HIGH_RISK_INDUSTRIES = ("construction", "restaurant", "retail")

NO_BANKING_DATA_RISK = 6
DEFAULT_ASSUMED_TERM_MONTHS = 60
LOAN_PER_BUSINESS_MONTH_LIMIT = 10_000
MIN_USE_OF_FUNDS_LENGTH = 10
