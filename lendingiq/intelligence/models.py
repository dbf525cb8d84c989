"""
Shared records for the document intelligence pipeline.

Application and document records arrive from the store as dictionaries;
these dataclasses give them a fixed shape. Extracted fields are immutable
once produced.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..utils import first_number
from .constants import ExtractionMethod

# Legacy method names written by older extraction runs
_METHOD_ALIASES = {
    "regex": ExtractionMethod.PATTERN,
    "ai": ExtractionMethod.INFERENCE,
}


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-None value among keys."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return first_number(value)


def parse_method(value: Any) -> ExtractionMethod:
    """Map a stored method string onto ExtractionMethod (unknown -> pattern)."""
    if isinstance(value, ExtractionMethod):
        return value
    text = str(value or "").strip().lower()
    if text in _METHOD_ALIASES:
        return _METHOD_ALIASES[text]
    try:
        return ExtractionMethod(text)
    except ValueError:
        return ExtractionMethod.PATTERN


@dataclass(frozen=True)
class ExtractedField:
    """A labelled value extracted from one document."""
    label: str
    value: str
    confidence: float = 0.0
    method: ExtractionMethod = ExtractionMethod.PATTERN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedField":
        return cls(
            label=str(data.get("label", "")),
            value=str(data.get("value", "")),
            confidence=float(data.get("confidence") or 0.0),
            method=parse_method(data.get("method")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "value": self.value,
            "confidence": self.confidence,
            "method": self.method.value,
        }


@dataclass(frozen=True)
class FieldEntry:
    """An extracted field together with the document it came from."""
    label: str
    value: str
    confidence: float
    method: ExtractionMethod
    document_id: str
    document_type: str
    document_name: str

    @classmethod
    def from_field(cls, extracted: ExtractedField, document: "Document") -> "FieldEntry":
        return cls(
            label=extracted.label,
            value=extracted.value,
            confidence=extracted.confidence,
            method=extracted.method,
            document_id=document.id,
            document_type=document.document_type,
            document_name=document.display_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        return data


@dataclass
class Document:
    """A stored document attached to an application."""
    id: str
    application_id: str
    file_name: str = ""
    document_type: str = "other"
    file_path: Optional[str] = None
    uploaded_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        return cls(
            id=str(data["id"]),
            application_id=str(_pick(data, "application_id", "applicationId") or ""),
            file_name=_pick(data, "file_name", "fileName") or "",
            document_type=_pick(data, "document_type", "documentType") or "other",
            file_path=_pick(data, "file_path", "filePath", "storage_key", "storageKey"),
            uploaded_at=_pick(data, "uploaded_at", "uploadedAt"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def display_name(self) -> str:
        return self.file_name or f"Document {self.id[:8]}"

    def cached_fields(self) -> Optional[List[ExtractedField]]:
        """Previously extracted fields stored on the document, if any."""
        insights = self.metadata.get("insights") or {}
        raw = _pick(insights, "extracted_fields", "extractedFields")
        if raw is None:
            return None
        return [ExtractedField.from_dict(item) for item in raw]


@dataclass
class ApplicationRecord:
    """Self-reported data from a loan application."""
    id: str
    legal_business_name: Optional[str] = None
    business_address: Optional[str] = None
    amount_requested: Optional[float] = None
    monthly_revenue: Optional[float] = None
    time_in_business: Optional[float] = None  # months
    industry: Optional[str] = None
    gst_number: Optional[str] = None
    use_of_funds: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = {
        "id": ("id",),
        "legal_business_name": ("legal_business_name", "legalBusinessName"),
        "business_address": ("business_address", "businessAddress"),
        "amount_requested": ("amount_requested", "amountRequested"),
        "monthly_revenue": ("monthly_revenue", "monthlyRevenue"),
        "time_in_business": ("time_in_business", "timeInBusiness"),
        "industry": ("industry",),
        "gst_number": ("gst_number", "gstNumber"),
        "use_of_funds": ("use_of_funds", "useOfFunds"),
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApplicationRecord":
        consumed = {key for keys in cls._KNOWN_KEYS.values() for key in keys}
        return cls(
            id=str(data["id"]),
            legal_business_name=_pick(data, "legal_business_name", "legalBusinessName"),
            business_address=_pick(data, "business_address", "businessAddress"),
            amount_requested=_optional_number(_pick(data, "amount_requested", "amountRequested")),
            monthly_revenue=_optional_number(_pick(data, "monthly_revenue", "monthlyRevenue")),
            time_in_business=_optional_number(_pick(data, "time_in_business", "timeInBusiness")),
            industry=_pick(data, "industry"),
            gst_number=_pick(data, "gst_number", "gstNumber"),
            use_of_funds=_pick(data, "use_of_funds", "useOfFunds"),
            extra={k: v for k, v in data.items() if k not in consumed},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def snapshot(self) -> Dict[str, Any]:
        """Fields shown to the inference capability."""
        return {
            "business_name": self.legal_business_name,
            "business_address": self.business_address,
            "amount_requested": self.amount_requested,
            "monthly_revenue": self.monthly_revenue,
            "time_in_business_months": self.time_in_business,
            "industry": self.industry,
            "gst_number": self.gst_number,
            "use_of_funds": self.use_of_funds,
        }
