"""
Banking statement analyzer.

Parses the raw text of one banking statement into monthly statistics and an
overall behavioural summary (balances, NSF incidents, overdrafts, cashflow
trend). Parsing is a fold over statement lines into immutable per-month
records; summaries are derived from those records separately.
"""

import asyncio
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import reduce
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..config import IntelligenceSettings
from ..utils import setup_logging
from .constants import (
    CASHFLOW_TREND_DEADBAND,
    DAYS_PER_MONTH,
    NEGATIVE_BALANCE_FLAG,
    OVERDRAFT_FLAG_PERCENT,
    CashflowTrend,
)
from .errors import InferenceUnavailableError
from .inference import TASK_REFINE_MONTHLY_STATS, InferenceClient, InferredMonth, InferredMonthlyStats
from .storage import DocumentStore
from .text_extraction import TextExtractor

logger = setup_logging()

ANALYSIS_METADATA_KEY = "banking_analysis"

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# "Jan 15, 2024", "January 15 2024", "Sept. 3, 2024"
_DATE_PATTERN = re.compile(r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})\b")

# Currency-shaped tokens; a token counts only with a "$" or two-digit cents
_AMOUNT_PATTERN = re.compile(r"(?<![\w.,-])(-?)(\$\s?)?(-?)(\d{1,3}(?:,\d{3})+|\d+)(\.\d{2})?(?!\d)")

_NSF_PATTERN = re.compile(r"NSF|Non-Sufficient|Insufficient.*Fund", re.IGNORECASE)
_NSF_FEE_PATTERN = re.compile(r"\$(\d+\.?\d*)")
_DEPOSIT_PATTERN = re.compile(r"deposit|credit", re.IGNORECASE)
_WITHDRAWAL_PATTERN = re.compile(r"withdrawal|debit|payment", re.IGNORECASE)

_ACCOUNT_NUMBER_PATTERN = re.compile(r"(?:Account|Acct)(?:\s*#?\s*:?\s*)(\d{7,12})", re.IGNORECASE)

BANK_NAME_PATTERNS = [
    (re.compile(r"Royal Bank of Canada|\bRBC\b", re.IGNORECASE), "RBC Royal Bank"),
    (re.compile(r"Toronto-Dominion|TD Bank|\bTD\b", re.IGNORECASE), "TD Bank"),
    (re.compile(r"Bank of Nova Scotia|Scotiabank", re.IGNORECASE), "Scotiabank"),
    (re.compile(r"Bank of Montreal|\bBMO\b", re.IGNORECASE), "BMO Bank of Montreal"),
    (re.compile(r"Canadian Imperial Bank|\bCIBC\b", re.IGNORECASE), "CIBC"),
    (re.compile(r"National Bank of Canada|\bNBC\b", re.IGNORECASE), "National Bank of Canada"),
]

ACCOUNT_TYPE_PATTERNS = [
    (re.compile(r"\b(Chequing|Checking)\b", re.IGNORECASE), "Chequing"),
    (re.compile(r"\bSavings\b", re.IGNORECASE), "Savings"),
    (re.compile(r"\bBusiness\b", re.IGNORECASE), "Business"),
    (re.compile(r"\bCurrent\b", re.IGNORECASE), "Current"),
]


def month_number(name: str) -> Optional[int]:
    """1-12 for a month name or abbreviation ("Sep", "Sept", "September"), None if unrecognised."""
    word = (name or "").strip().rstrip(".").title()
    if len(word) < 3:
        return None
    for number, full_name in enumerate(MONTH_NAMES, start=1):
        if full_name.startswith(word):
            return number
    return None


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class MonthlyBankStats:
    """Statistics for one calendar month of a statement."""
    month: str
    year: int
    opening_balance: float = 0.0
    closing_balance: float = 0.0
    min_balance: float = 0.0
    max_balance: float = 0.0
    nsf_count: int = 0
    nsf_fees: float = 0.0
    overdraft_days: int = 0
    transaction_count: int = 0
    total_deposits: float = 0.0
    total_withdrawals: float = 0.0
    average_balance: float = 0.0

    @property
    def period(self) -> Tuple[int, int]:
        return (self.year, month_number(self.month) or 0)

    @property
    def label(self) -> str:
        return f"{self.month} {self.year}"

    @classmethod
    def from_inferred(cls, row: InferredMonth) -> Optional["MonthlyBankStats"]:
        number = month_number(row.month)
        if number is None:
            return None
        average = row.average_balance
        if average is None:
            average = (row.min_balance + row.max_balance) / 2
        return cls(
            month=MONTH_ABBREVIATIONS[number - 1],
            year=row.year,
            opening_balance=row.opening_balance,
            closing_balance=row.closing_balance,
            min_balance=row.min_balance,
            max_balance=row.max_balance,
            nsf_count=max(0, row.nsf_count),
            nsf_fees=max(0.0, row.nsf_fees),
            overdraft_days=max(0, row.overdraft_days),
            transaction_count=max(0, row.transaction_count),
            total_deposits=row.total_deposits,
            total_withdrawals=row.total_withdrawals,
            average_balance=average,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "year": self.year,
            "opening_balance": self.opening_balance,
            "closing_balance": self.closing_balance,
            "min_balance": self.min_balance,
            "max_balance": self.max_balance,
            "nsf_count": self.nsf_count,
            "nsf_fees": self.nsf_fees,
            "overdraft_days": self.overdraft_days,
            "transaction_count": self.transaction_count,
            "total_deposits": self.total_deposits,
            "total_withdrawals": self.total_withdrawals,
            "average_balance": self.average_balance,
        }


@dataclass(frozen=True)
class StatementLine:
    """What one dated statement line contributes to its month."""
    month: str
    year: int
    amounts: Tuple[float, ...] = ()
    is_nsf: bool = False
    nsf_fee: float = 0.0
    is_deposit: bool = False
    is_withdrawal: bool = False

    @property
    def balance(self) -> Optional[float]:
        # Last amount on the line is the running balance
        return self.amounts[-1] if self.amounts else None


@dataclass(frozen=True)
class MonthAccumulator:
    """Running totals for one month while lines are folded in."""
    month: str
    year: int
    first_balance: Optional[float] = None
    last_balance: Optional[float] = None
    min_balance: Optional[float] = None
    max_balance: Optional[float] = None
    nsf_count: int = 0
    nsf_fees: float = 0.0
    overdraft_days: int = 0
    transaction_count: int = 0
    total_deposits: float = 0.0
    total_withdrawals: float = 0.0

    def add(self, line: StatementLine) -> "MonthAccumulator":
        updated = self
        balance = line.balance
        if balance is not None:
            updated = replace(
                updated,
                first_balance=balance if updated.first_balance is None else updated.first_balance,
                last_balance=balance,
                min_balance=balance if updated.min_balance is None else min(updated.min_balance, balance),
                max_balance=balance if updated.max_balance is None else max(updated.max_balance, balance),
                overdraft_days=updated.overdraft_days + (1 if balance < 0 else 0),
                transaction_count=updated.transaction_count + 1,
            )
            first_amount = line.amounts[0]
            if line.is_deposit and first_amount > 0:
                updated = replace(updated, total_deposits=updated.total_deposits + first_amount)
            elif line.is_withdrawal and first_amount > 0:
                updated = replace(updated, total_withdrawals=updated.total_withdrawals + first_amount)

        if line.is_nsf:
            updated = replace(
                updated,
                nsf_count=updated.nsf_count + 1,
                nsf_fees=updated.nsf_fees + line.nsf_fee,
            )
        return updated

    def finish(self) -> MonthlyBankStats:
        low = self.min_balance if self.min_balance is not None else 0.0
        high = self.max_balance if self.max_balance is not None else 0.0
        return MonthlyBankStats(
            month=self.month,
            year=self.year,
            opening_balance=self.first_balance if self.first_balance is not None else 0.0,
            closing_balance=self.last_balance if self.last_balance is not None else 0.0,
            min_balance=low,
            max_balance=high,
            nsf_count=self.nsf_count,
            nsf_fees=round(self.nsf_fees, 2),
            overdraft_days=self.overdraft_days,
            transaction_count=self.transaction_count,
            total_deposits=round(self.total_deposits, 2),
            total_withdrawals=round(self.total_withdrawals, 2),
            average_balance=(low + high) / 2,
        )


@dataclass(frozen=True)
class StatementMetadata:
    account_number: Optional[str] = None
    account_type: Optional[str] = None
    bank_name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass
class BankingSummary:
    average_monthly_balance: float = 0.0
    lowest_balance: float = 0.0
    highest_balance: float = 0.0
    total_nsf_incidents: int = 0
    total_nsf_fees: float = 0.0
    overdraft_frequency: float = 0.0  # percent of days
    cashflow_trend: CashflowTrend = CashflowTrend.STABLE
    risk_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_monthly_balance": self.average_monthly_balance,
            "lowest_balance": self.lowest_balance,
            "highest_balance": self.highest_balance,
            "total_nsf_incidents": self.total_nsf_incidents,
            "total_nsf_fees": self.total_nsf_fees,
            "overdraft_frequency": self.overdraft_frequency,
            "cashflow_trend": self.cashflow_trend.value,
            "risk_flags": list(self.risk_flags),
        }


@dataclass
class BankingAnalysis:
    document_id: str
    document_name: str
    monthly_stats: List[MonthlyBankStats]
    overall_summary: BankingSummary
    metadata: StatementMetadata = field(default_factory=StatementMetadata)
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    analysis_confidence: float = 0.0
    refined_by_inference: bool = False
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "account_number": self.metadata.account_number,
            "account_type": self.metadata.account_type,
            "bank_name": self.metadata.bank_name,
            "statement_period": {
                "start_date": self.metadata.start_date,
                "end_date": self.metadata.end_date,
            },
            "monthly_stats": [m.to_dict() for m in self.monthly_stats],
            "overall_summary": self.overall_summary.to_dict(),
            "insights": list(self.insights),
            "recommendations": list(self.recommendations),
            "analysis_confidence": self.analysis_confidence,
            "refined_by_inference": self.refined_by_inference,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass
class BatchBankingResult:
    analyses: List[BankingAnalysis] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyses": [a.to_dict() for a in self.analyses],
            "errors": list(self.errors),
        }


# =============================================================================
# Parsing
# =============================================================================

def parse_amounts(line: str) -> Tuple[float, ...]:
    """Currency amounts on a line, in order of appearance."""
    amounts = []
    for match in _AMOUNT_PATTERN.finditer(line):
        lead_sign, dollar, inner_sign, whole, cents = match.groups()
        if not dollar and not cents:
            continue
        value = float(whole.replace(",", "") + (cents or ""))
        if lead_sign or inner_sign:
            value = -value
        amounts.append(value)
    return tuple(amounts)


def parse_line(line: str) -> Optional[StatementLine]:
    """Interpret a statement line; None unless it carries a recognisable date."""
    date_match = _DATE_PATTERN.search(line)
    if not date_match:
        return None
    number = month_number(date_match.group(1))
    if number is None:
        return None

    is_nsf = bool(_NSF_PATTERN.search(line))
    fee = 0.0
    if is_nsf:
        fee_match = _NSF_FEE_PATTERN.search(line)
        if fee_match:
            fee = float(fee_match.group(1))

    # Drop the date itself before scanning for amounts
    remainder = line[:date_match.start()] + " " + line[date_match.end():]
    return StatementLine(
        month=MONTH_ABBREVIATIONS[number - 1],
        year=int(date_match.group(3)),
        amounts=parse_amounts(remainder),
        is_nsf=is_nsf,
        nsf_fee=fee,
        is_deposit=bool(_DEPOSIT_PATTERN.search(line)),
        is_withdrawal=bool(_WITHDRAWAL_PATTERN.search(line)),
    )


def fold_line(
    months: Mapping[Tuple[int, int], MonthAccumulator],
    line: StatementLine,
) -> Dict[Tuple[int, int], MonthAccumulator]:
    """Return a new month map with line folded into its month."""
    key = (line.year, month_number(line.month) or 0)
    current = months.get(key) or MonthAccumulator(month=line.month, year=line.year)
    return {**months, key: current.add(line)}


def extract_monthly_stats(text: str) -> List[MonthlyBankStats]:
    """Pattern-based monthly statistics, sorted chronologically."""
    lines = filter(None, (parse_line(raw) for raw in text.splitlines()))
    folded = reduce(fold_line, lines, {})
    return [folded[key].finish() for key in sorted(folded)]


def extract_metadata(text: str) -> StatementMetadata:
    account_match = _ACCOUNT_NUMBER_PATTERN.search(text)
    bank_name = next((name for pattern, name in BANK_NAME_PATTERNS if pattern.search(text)), None)
    account_type = next((name for pattern, name in ACCOUNT_TYPE_PATTERNS if pattern.search(text)), None)

    dates = [
        m.group(0) for m in _DATE_PATTERN.finditer(text)
        if month_number(m.group(1)) is not None
    ]
    start_date, end_date = (dates[0], dates[-1]) if len(dates) >= 2 else (None, None)

    return StatementMetadata(
        account_number=account_match.group(1) if account_match else None,
        account_type=account_type,
        bank_name=bank_name,
        start_date=start_date,
        end_date=end_date,
    )


# =============================================================================
# Derivation
# =============================================================================

def cashflow_trend(months: List[MonthlyBankStats]) -> CashflowTrend:
    """Compare mean balances of the first and last thirds of the period."""
    if len(months) < 3:
        return CashflowTrend.STABLE

    third = len(months) // 3
    early = sum(m.average_balance for m in months[:third]) / third
    late = sum(m.average_balance for m in months[-third:]) / third

    if early == 0:
        if late > 0:
            return CashflowTrend.IMPROVING
        if late < 0:
            return CashflowTrend.DECLINING
        return CashflowTrend.STABLE

    change = (late - early) / abs(early)
    if change > CASHFLOW_TREND_DEADBAND:
        return CashflowTrend.IMPROVING
    if change < -CASHFLOW_TREND_DEADBAND:
        return CashflowTrend.DECLINING
    return CashflowTrend.STABLE


def summarize(months: List[MonthlyBankStats]) -> BankingSummary:
    if not months:
        return BankingSummary(risk_flags=["Insufficient data for analysis"])

    total_nsf = sum(m.nsf_count for m in months)
    total_days = len(months) * DAYS_PER_MONTH
    overdraft_frequency = sum(m.overdraft_days for m in months) / total_days * 100
    trend = cashflow_trend(months)
    lowest = min(m.min_balance for m in months)

    flags = []
    if total_nsf > 0:
        flags.append(f"{total_nsf} NSF incidents found")
    if overdraft_frequency > OVERDRAFT_FLAG_PERCENT:
        flags.append("Frequent overdrafts detected")
    if lowest < NEGATIVE_BALANCE_FLAG:
        flags.append("Significant negative balances")
    if trend is CashflowTrend.DECLINING:
        flags.append("Declining cashflow trend")

    return BankingSummary(
        average_monthly_balance=sum(m.average_balance for m in months) / len(months),
        lowest_balance=lowest,
        highest_balance=max(m.max_balance for m in months),
        total_nsf_incidents=total_nsf,
        total_nsf_fees=round(sum(m.nsf_fees for m in months), 2),
        overdraft_frequency=overdraft_frequency,
        cashflow_trend=trend,
        risk_flags=flags,
    )


def banking_insights(summary: BankingSummary) -> List[str]:
    insights = []
    if summary.average_monthly_balance > 10000:
        insights.append("Strong average monthly balance indicates good cash reserves")
    elif summary.average_monthly_balance < 1000:
        insights.append("Low average balance may indicate cashflow challenges")

    if summary.total_nsf_incidents == 0:
        insights.append("No NSF incidents shows good account management")
    else:
        insights.append(f"{summary.total_nsf_incidents} NSF incidents indicate potential cashflow issues")

    trend_insights = {
        CashflowTrend.IMPROVING: "Improving cashflow trend shows business growth",
        CashflowTrend.DECLINING: "Declining cashflow trend requires attention",
        CashflowTrend.STABLE: "Stable cashflow indicates consistent business performance",
    }
    insights.append(trend_insights[summary.cashflow_trend])

    if summary.overdraft_frequency > 20:
        insights.append("High overdraft frequency indicates working capital challenges")
    return insights


def banking_recommendations(summary: BankingSummary) -> List[str]:
    recommendations = []
    if summary.total_nsf_incidents > 0:
        recommendations.append("Consider requiring a larger cash reserve or line of credit")
    if summary.overdraft_frequency > 15:
        recommendations.append("Review working capital requirements and consider term financing")
    if summary.cashflow_trend is CashflowTrend.DECLINING:
        recommendations.append("Request current financial statements to assess business viability")
    if len(summary.risk_flags) > 2:
        recommendations.append("Consider additional security or guarantees due to banking history")
    if summary.average_monthly_balance > 50000:
        recommendations.append("Strong cash position supports larger loan amounts")
    return recommendations


def analysis_confidence(months: List[MonthlyBankStats], text: str) -> float:
    confidence = 0.5
    if len(months) >= 12:
        confidence += 0.3
    elif len(months) >= 6:
        confidence += 0.2
    elif len(months) >= 3:
        confidence += 0.1

    if len(text) > 5000:
        confidence += 0.1
    if "Statement" in text:
        confidence += 0.1
    return min(1.0, round(confidence, 2))


# =============================================================================
# Analyzer
# =============================================================================

class BankingAnalyzer:
    """
    Analyzes banking statements.

    Text extraction failures propagate as ``ExtractionUnavailableError``.
    Inference refinement and persistence are best-effort.
    """

    def __init__(
        self,
        store: DocumentStore,
        text_extractor: TextExtractor,
        inference: InferenceClient,
        settings: Optional[IntelligenceSettings] = None,
    ):
        self.store = store
        self.text_extractor = text_extractor
        self.inference = inference
        self._settings = settings

    @property
    def settings(self) -> IntelligenceSettings:
        if self._settings is None:
            self._settings = IntelligenceSettings.from_env()
        return self._settings

    async def analyze(self, document_id: str) -> BankingAnalysis:
        """
        Analyze one banking statement document.

        Raises:
            NotFoundError: If the document does not exist
            ExtractionUnavailableError: If no text could be extracted
        """
        document = await self.store.get_document(document_id)
        text = await self.text_extractor.extract_text(document)

        estimate = extract_monthly_stats(text)
        refined = await self._refine(document_id, text, estimate)
        months = refined if refined is not None else estimate

        summary = summarize(months)
        analysis = BankingAnalysis(
            document_id=document_id,
            document_name=document.file_name or "Banking Statement",
            monthly_stats=months,
            overall_summary=summary,
            metadata=extract_metadata(text),
            insights=banking_insights(summary),
            recommendations=banking_recommendations(summary),
            analysis_confidence=analysis_confidence(months, text),
            refined_by_inference=refined is not None,
        )

        await self._persist(analysis)
        logger.info("Analyzed banking statement %s: %d months", document_id, len(months))
        return analysis

    async def _refine(
        self,
        document_id: str,
        text: str,
        estimate: List[MonthlyBankStats],
    ) -> Optional[List[MonthlyBankStats]]:
        """Inference estimate replacing the pattern estimate, or None to keep it."""
        payload = {
            "statement_text": text[:self.settings.statement_text_limit],
            "pattern_estimate": [m.to_dict() for m in estimate],
        }
        try:
            result = await self.inference.infer(TASK_REFINE_MONTHLY_STATS, payload, InferredMonthlyStats)
        except InferenceUnavailableError as e:
            logger.warning("Statement refinement unavailable for %s: %s", document_id, e)
            return None

        months = [m for m in map(MonthlyBankStats.from_inferred, result.monthly_stats) if m is not None]
        if not months:
            return None
        return sorted(months, key=lambda m: m.period)

    async def _persist(self, analysis: BankingAnalysis) -> None:
        try:
            await self.store.save_analysis(analysis.document_id, ANALYSIS_METADATA_KEY, analysis.to_dict())
        except Exception as e:
            logger.warning("Failed to save banking analysis for %s: %s", analysis.document_id, e)

    async def batch_analyze(self, document_ids: List[str]) -> BatchBankingResult:
        """Analyze several statements; failures are collected per document."""
        results = await asyncio.gather(
            *(self.analyze(doc_id) for doc_id in document_ids),
            return_exceptions=True,
        )

        batch = BatchBankingResult()
        for doc_id, result in zip(document_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Banking analysis failed for %s: %s", doc_id, result)
                batch.errors.append({"document_id": doc_id, "error": str(result) or type(result).__name__})
            else:
                batch.analyses.append(result)
        return batch
