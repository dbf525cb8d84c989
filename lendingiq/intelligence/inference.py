"""
Inference boundary for optional LLM enhancement.

Every caller treats inference as optional: a failure of any kind surfaces as
``InferenceUnavailableError`` and the caller falls back to its deterministic
path. Responses are validated against pydantic models so consumers never
probe loosely-shaped dictionaries.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..config import OpenAISettings
from ..openai_client import OpenAIClientError, chat_completion
from ..utils import setup_logging
from .errors import InferenceUnavailableError

logger = setup_logging()

M = TypeVar("M", bound=BaseModel)


# =============================================================================
# Response schemas
# =============================================================================

def _as_fraction(value: Any) -> float:
    """Accept 0..1 or 0..100 confidence values."""
    number = float(value or 0.0)
    if number > 1.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


class ConflictResolution(BaseModel):
    recommended_value: str
    reasoning: str = ""
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> float:
        return _as_fraction(value)


class InferredDiscrepancy(BaseModel):
    field_name: str
    issue: str
    severity: str = "medium"


class InferredDiscrepancies(BaseModel):
    discrepancies: List[InferredDiscrepancy] = Field(default_factory=list)


class InferredMonth(BaseModel):
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
    average_balance: Optional[float] = None


class InferredMonthlyStats(BaseModel):
    monthly_stats: List[InferredMonth] = Field(default_factory=list)


class RiskNarrative(BaseModel):
    risk_factors: List[str] = Field(default_factory=list)
    mitigating_factors: List[str] = Field(default_factory=list)
    justification: str = ""
    recommendations: List[str] = Field(default_factory=list)


# =============================================================================
# Prompts
# =============================================================================

TASK_RESOLVE_CONFLICT = "resolve_conflict"
TASK_FIND_DISCREPANCIES = "find_discrepancies"
TASK_REFINE_MONTHLY_STATS = "refine_monthly_stats"
TASK_RISK_NARRATIVE = "risk_narrative"

SYSTEM_PROMPTS: Dict[str, str] = {
    TASK_RESOLVE_CONFLICT: (
        "You are a data quality expert resolving conflicting values extracted from "
        "loan documents. Consider source document reliability, extraction confidence "
        "and consistency. Recommend the most likely correct value."
    ),
    TASK_FIND_DISCREPANCIES: (
        "You are a loan underwriting analyst. Compare the application data with the "
        "values found in the supporting documents and list material discrepancies "
        "that the provided checks may have missed. Severity is one of critical, "
        "high, medium or low."
    ),
    TASK_REFINE_MONTHLY_STATS: (
        "You are a banking expert specialising in statement analysis. Extract accurate "
        "month-by-month statistics from the statement text, including actual NSF "
        "incidents, fees and balances. Months use three-letter abbreviations."
    ),
    TASK_RISK_NARRATIVE: (
        "You are a commercial lending risk analyst. Explain the computed risk score "
        "in plain language: list risk factors, mitigating factors, a short "
        "justification and concrete recommendations. Do not change the score."
    ),
}


class InferenceClient(Protocol):
    """Accepts a prompt payload and returns a validated structured result."""

    async def infer(self, task: str, payload: Dict[str, Any], schema: Type[M]) -> M: ...


def build_messages(task: str, payload: Dict[str, Any], schema: Type[BaseModel]) -> List[Dict[str, str]]:
    """System + user message pair with the response schema as a hint."""
    system = SYSTEM_PROMPTS.get(task, "You are a careful financial analyst.")
    schema_hint = json.dumps(schema.model_json_schema())
    return [
        {
            "role": "system",
            "content": f"{system}\n\nRespond with a single JSON object matching this JSON schema:\n{schema_hint}",
        },
        {"role": "user", "content": json.dumps(payload, indent=2, default=str)},
    ]


def parse_response(content: Optional[str], schema: Type[M]) -> M:
    """Parse and validate a JSON response body."""
    # Content filters and empty completions come back without content
    if not isinstance(content, str) or not content.strip():
        raise InferenceUnavailableError("Inference response has no content")
    try:
        return schema.model_validate(json.loads(content))
    except (TypeError, ValueError, ValidationError) as e:
        raise InferenceUnavailableError(f"Malformed inference response: {e}") from e


class OpenAIInferenceClient:
    """Inference client backed by Azure OpenAI chat completions (JSON mode)."""

    def __init__(self, settings: OpenAISettings, timeout: float = 60, max_tokens: int = 1200):
        self.settings = settings
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def infer(self, task: str, payload: Dict[str, Any], schema: Type[M]) -> M:
        messages = build_messages(task, payload, schema)
        try:
            result = await asyncio.to_thread(
                chat_completion,
                self.settings,
                messages,
                max_tokens=self.max_tokens,
                json_mode=True,
                timeout=self.timeout,
            )
        except OpenAIClientError as e:
            raise InferenceUnavailableError(f"{task} failed: {e}") from e

        logger.debug("Inference %s used %s", task, result.get("usage", {}))
        return parse_response(result.get("content"), schema)


class DisabledInferenceClient:
    """Inference client used when inference is switched off or not configured."""

    def __init__(self, reason: str = "inference is disabled"):
        self.reason = reason

    async def infer(self, task: str, payload: Dict[str, Any], schema: Type[M]) -> M:
        raise InferenceUnavailableError(f"{task} skipped: {self.reason}")
