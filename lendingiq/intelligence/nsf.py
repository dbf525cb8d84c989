"""
NSF (non-sufficient funds) trend analyzer.

A derived view over a banking analysis: per-month NSF figures, overall
severity, trend and consistency classifications, and rule-based risk
factors, insights and recommendations.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..utils import setup_logging
from .banking import BankingAnalysis, BankingAnalyzer, MonthlyBankStats, month_number
from .constants import (
    DAYS_PER_MONTH,
    NSF_CONSECUTIVE_MIN_COUNT,
    NSF_CONSISTENT_CV,
    NSF_CRITICAL_THRESHOLDS,
    NSF_DAYS_PER_INCIDENT,
    NSF_HIGH_THRESHOLDS,
    NSF_MODERATE_THRESHOLDS,
    NSF_VOLATILE_CV,
    NSFConsistency,
    NSFSeverity,
    NSFTrend,
    TrendDirection,
)

logger = setup_logging()


@dataclass(frozen=True)
class MonthlyNSFData:
    month: str
    year: int
    nsf_count: int
    nsf_fees: float
    average_fee_per_incident: float
    days_with_nsf: int
    consecutive_nsf_days: int

    @property
    def label(self) -> str:
        return f"{self.month} {self.year}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "year": self.year,
            "nsf_count": self.nsf_count,
            "nsf_fees": self.nsf_fees,
            "average_fee_per_incident": self.average_fee_per_incident,
            "days_with_nsf": self.days_with_nsf,
            "consecutive_nsf_days": self.consecutive_nsf_days,
        }


@dataclass
class NSFSummary:
    total_nsf_incidents: int = 0
    total_nsf_fees: float = 0.0
    average_monthly_nsf: float = 0.0
    months_with_nsf: int = 0
    peak_nsf_month: str = "None"
    nsf_frequency: float = 0.0
    trend: NSFTrend = NSFTrend.STABLE
    severity: NSFSeverity = NSFSeverity.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_nsf_incidents": self.total_nsf_incidents,
            "total_nsf_fees": self.total_nsf_fees,
            "average_monthly_nsf": self.average_monthly_nsf,
            "months_with_nsf": self.months_with_nsf,
            "peak_nsf_month": self.peak_nsf_month,
            "nsf_frequency": self.nsf_frequency,
            "trend": self.trend.value,
            "severity": self.severity.value,
        }


@dataclass
class NSFTrendDetail:
    direction: TrendDirection = TrendDirection.FLAT
    magnitude: float = 0.0  # percent change, first to last month
    consistency: NSFConsistency = NSFConsistency.SPORADIC
    recent_trend: NSFTrend = NSFTrend.STABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "magnitude": self.magnitude,
            "consistency": self.consistency.value,
            "recent_trend": self.recent_trend.value,
        }


@dataclass
class NSFTrendAnalysis:
    document_id: str
    document_name: str
    start_date: Optional[date]
    end_date: Optional[date]
    total_months: int
    monthly_nsf_data: List[MonthlyNSFData] = field(default_factory=list)
    overall_summary: NSFSummary = field(default_factory=NSFSummary)
    trend_analysis: NSFTrendDetail = field(default_factory=NSFTrendDetail)
    risk_factors: List[str] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls, document_id: str, document_name: str = "Unknown Document") -> "NSFTrendAnalysis":
        """Sentinel for statements without any parsed months."""
        return cls(
            document_id=document_id,
            document_name=document_name,
            start_date=None,
            end_date=None,
            total_months=0,
            risk_factors=["No banking data available for NSF analysis"],
            insights=["NSF analysis could not be performed due to lack of data"],
            recommendations=["Provide banking statements to enable NSF analysis"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "analysis_range": {
                "start_date": self.start_date.isoformat() if self.start_date else None,
                "end_date": self.end_date.isoformat() if self.end_date else None,
                "total_months": self.total_months,
            },
            "monthly_nsf_data": [m.to_dict() for m in self.monthly_nsf_data],
            "overall_summary": self.overall_summary.to_dict(),
            "trend_analysis": self.trend_analysis.to_dict(),
            "risk_factors": list(self.risk_factors),
            "insights": list(self.insights),
            "recommendations": list(self.recommendations),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


# =============================================================================
# Derivation rules
# =============================================================================

def monthly_nsf(stats: MonthlyBankStats) -> MonthlyNSFData:
    count = stats.nsf_count
    fees = stats.nsf_fees
    return MonthlyNSFData(
        month=stats.month,
        year=stats.year,
        nsf_count=count,
        nsf_fees=round(fees, 2),
        average_fee_per_incident=round(fees / count, 2) if count > 0 else 0.0,
        days_with_nsf=math.floor(min(count * NSF_DAYS_PER_INCIDENT, DAYS_PER_MONTH) + 0.5),
        consecutive_nsf_days=count // 2 if count > NSF_CONSECUTIVE_MIN_COUNT else 0,
    )


def nsf_severity(average_monthly: float, total_incidents: int) -> NSFSeverity:
    """Tier from fixed thresholds; more incidents never lowers the tier."""
    for (avg_limit, total_limit), tier in (
        (NSF_CRITICAL_THRESHOLDS, NSFSeverity.CRITICAL),
        (NSF_HIGH_THRESHOLDS, NSFSeverity.HIGH),
        (NSF_MODERATE_THRESHOLDS, NSFSeverity.MODERATE),
    ):
        if average_monthly >= avg_limit or total_incidents >= total_limit:
            return tier
    return NSFSeverity.LOW


def _mean(values: List[int]) -> float:
    return sum(values) / len(values)


def overall_trend(counts: List[int]) -> NSFTrend:
    """First third vs last third of the period."""
    if len(counts) < 3:
        return NSFTrend.STABLE
    third = len(counts) // 3
    change = _mean(counts[-third:]) - _mean(counts[:third])
    if change >= 1:
        return NSFTrend.WORSENING
    if change <= -0.5:
        return NSFTrend.IMPROVING
    return NSFTrend.STABLE


def recent_trend(counts: List[int]) -> NSFTrend:
    """Last three months vs the three before them."""
    if len(counts) < 3:
        return NSFTrend.STABLE
    earlier = counts[-6:-3]
    if not earlier:
        return NSFTrend.STABLE
    change = _mean(counts[-3:]) - _mean(earlier)
    if change >= 0.5:
        return NSFTrend.WORSENING
    if change <= -0.5:
        return NSFTrend.IMPROVING
    return NSFTrend.STABLE


def consistency(counts: List[int]) -> NSFConsistency:
    """Classify by coefficient of variation of monthly counts."""
    avg = _mean(counts)
    std_dev = math.sqrt(sum((c - avg) ** 2 for c in counts) / len(counts))
    cv = std_dev / avg if avg > 0 else 0.0
    if cv < NSF_CONSISTENT_CV:
        return NSFConsistency.CONSISTENT
    if cv < NSF_VOLATILE_CV:
        return NSFConsistency.VOLATILE
    return NSFConsistency.SPORADIC


def direction_and_magnitude(counts: List[int]) -> Tuple[TrendDirection, float]:
    first, last = counts[0], counts[-1]
    if first == 0 and last == 0:
        return TrendDirection.FLAT, 0.0

    change = last - first
    if first > 0:
        magnitude = change / first * 100
    else:
        magnitude = 100.0

    if change > 0.5:
        direction = TrendDirection.UP
    elif change < -0.5:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.FLAT
    return direction, round(magnitude, 1)


def summarize_nsf(months: List[MonthlyNSFData]) -> NSFSummary:
    if not months:
        return NSFSummary()

    counts = [m.nsf_count for m in months]
    total = sum(counts)
    average = total / len(months)
    peak = max(months, key=lambda m: m.nsf_count)  # first of equal peaks

    return NSFSummary(
        total_nsf_incidents=total,
        total_nsf_fees=round(sum(m.nsf_fees for m in months), 2),
        average_monthly_nsf=round(average, 2),
        months_with_nsf=sum(1 for c in counts if c > 0),
        peak_nsf_month=peak.label if peak.nsf_count > 0 else "None",
        nsf_frequency=round(average, 2),
        trend=overall_trend(counts),
        severity=nsf_severity(average, total),
    )


def analyze_trend(months: List[MonthlyNSFData]) -> NSFTrendDetail:
    if len(months) < 2:
        return NSFTrendDetail()
    counts = [m.nsf_count for m in months]
    direction, magnitude = direction_and_magnitude(counts)
    return NSFTrendDetail(
        direction=direction,
        magnitude=magnitude,
        consistency=consistency(counts),
        recent_trend=recent_trend(counts),
    )


def nsf_risk_factors(summary: NSFSummary, trend: NSFTrendDetail) -> List[str]:
    risks = []
    if summary.severity is NSFSeverity.CRITICAL:
        risks.append("Critical NSF frequency indicates severe cash flow problems")
    elif summary.severity is NSFSeverity.HIGH:
        risks.append("High NSF frequency suggests significant cash management issues")

    if NSFTrend.WORSENING in (summary.trend, trend.recent_trend):
        risks.append("NSF incidents are increasing over time")
    if trend.consistency is NSFConsistency.CONSISTENT and summary.average_monthly_nsf > 1:
        risks.append("Consistent NSF pattern suggests systemic cash flow issues")
    if summary.total_nsf_fees > 500:
        risks.append("Significant NSF fees impact business profitability")
    if trend.direction is TrendDirection.UP and trend.magnitude > 50:
        risks.append("Significant recent increase in NSF incidents")
    return risks


def nsf_insights(summary: NSFSummary, trend: NSFTrendDetail) -> List[str]:
    if summary.total_nsf_incidents == 0:
        return ["No NSF incidents demonstrates excellent cash management"]

    insights = []
    if NSFTrend.IMPROVING in (summary.trend, trend.recent_trend):
        insights.append("NSF incidents are decreasing, showing improved cash management")

    if trend.consistency is NSFConsistency.SPORADIC:
        insights.append("Sporadic NSF pattern suggests occasional cash flow challenges")
    elif trend.consistency is NSFConsistency.VOLATILE:
        insights.append("Volatile NSF pattern indicates unpredictable cash flow issues")

    if summary.average_monthly_nsf < 0.5:
        insights.append("Low average NSF frequency indicates generally stable operations")
    if summary.months_with_nsf < summary.total_nsf_incidents * 0.7:
        insights.append("NSF incidents concentrated in specific months")
    return insights


def nsf_recommendations(summary: NSFSummary, trend: NSFTrendDetail) -> List[str]:
    if summary.total_nsf_incidents == 0:
        return ["Excellent banking history supports lending approval"]

    recommendations = []
    if summary.severity is NSFSeverity.CRITICAL:
        recommendations.append("CRITICAL: Require cash flow improvement plan before lending")
        recommendations.append("Consider requiring cash collateral or enhanced guarantees")
    elif summary.severity is NSFSeverity.HIGH:
        recommendations.append("Require detailed cash flow projections and monitoring")
        recommendations.append("Consider shorter loan terms with frequent reviews")
    elif summary.severity is NSFSeverity.MODERATE:
        recommendations.append("Monitor cash flow closely and require monthly reports")

    if summary.trend is NSFTrend.WORSENING:
        recommendations.append("Investigate causes of deteriorating cash management")
    elif summary.trend is NSFTrend.IMPROVING:
        recommendations.append("Positive trend supports lending consideration")

    if summary.total_nsf_fees > 200:
        recommendations.append("Help client establish overdraft protection to reduce fees")
    if trend.consistency is NSFConsistency.VOLATILE:
        recommendations.append("Recommend cash flow forecasting and management tools")
    return recommendations


def _month_date(month: str, year: int, day: int) -> Optional[date]:
    number = month_number(month)
    return date(year, number, day) if number else None


# =============================================================================
# Analyzer
# =============================================================================

class NSFTrendAnalyzer:
    """NSF trend analysis on top of the banking analyzer."""

    def __init__(self, banking_analyzer: BankingAnalyzer):
        self.banking_analyzer = banking_analyzer

    async def analyze(self, document_id: str) -> NSFTrendAnalysis:
        """
        Re-derive the banking analysis for a statement and analyze its NSF history.

        Raises:
            NotFoundError: If the document does not exist
            ExtractionUnavailableError: If no text could be extracted
        """
        banking = await self.banking_analyzer.analyze(document_id)
        return self.analyze_banking(banking)

    def analyze_banking(self, banking: BankingAnalysis) -> NSFTrendAnalysis:
        """NSF analysis for an existing banking analysis (pure)."""
        if not banking.monthly_stats:
            return NSFTrendAnalysis.empty(banking.document_id, banking.document_name)

        months = [monthly_nsf(stats) for stats in banking.monthly_stats]
        summary = summarize_nsf(months)
        trend = analyze_trend(months)

        logger.info(
            "NSF analysis for %s: %d incidents over %d months (%s)",
            banking.document_id, summary.total_nsf_incidents, len(months), summary.severity.value,
        )

        return NSFTrendAnalysis(
            document_id=banking.document_id,
            document_name=banking.document_name,
            start_date=_month_date(months[0].month, months[0].year, 1),
            end_date=_month_date(months[-1].month, months[-1].year, 28),
            total_months=len(months),
            monthly_nsf_data=months,
            overall_summary=summary,
            trend_analysis=trend,
            risk_factors=nsf_risk_factors(summary, trend),
            insights=nsf_insights(summary, trend),
            recommendations=nsf_recommendations(summary, trend),
        )
