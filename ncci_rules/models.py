"""
Shared types for the NCCI rule store and claim validator.

Rule rows (PTPEdit / MUERule / AOCRule) are what ingestion writes and the
validator reads back. ClaimInput / ValidationResult mirror the JSON shapes
exchanged with callers (snake_case keys).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ModifierIndicator(Enum):
    DISALLOWED = "Disallowed"
    ALLOWED_WITH_MODIFIER = "AllowedWithModifier"
    NOT_APPLICABLE = "NotApplicable"
    UNKNOWN = "Unknown"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "ModifierIndicator":
        """Interpret a modifier indicator: CMS codes (0 / 1 / 9, or N / Y) or a member value."""
        value = (raw or "").strip().upper()
        for member in cls:
            if value == member.value.upper():
                return member
        if value in ("0", "N"):
            return cls.DISALLOWED
        if value in ("1", "Y"):
            return cls.ALLOWED_WITH_MODIFIER
        if value == "9":
            return cls.NOT_APPLICABLE
        return cls.UNKNOWN


class IssueType(str, Enum):
    ICD_FORMAT = "ICD_FORMAT"
    MODIFIER_INVALID = "MODIFIER_INVALID"
    MODIFIER_INAPPROPRIATE = "MODIFIER_INAPPROPRIATE"
    POS_INVALID = "POS_INVALID"
    REVENUE_CODE_INVALID = "REVENUE_CODE_INVALID"
    EFFECTIVE_DATE_INVALID = "EFFECTIVE_DATE_INVALID"
    AOC_PRIMARY_MISSING = "AOC_PRIMARY_MISSING"
    AOC = "AOC"
    MUE_EXCEEDED = "MUE_EXCEEDED"
    MUE = "MUE"
    PTP_BLOCKED = "PTP_BLOCKED"
    PTP_NEEDS_MODIFIER = "PTP_NEEDS_MODIFIER"
    PTP_BYPASSED = "PTP_BYPASSED"
    PTP_UNKNOWN_INDICATOR = "PTP_UNKNOWN_INDICATOR"
    NEEDS_POLICY_CHECK = "NEEDS_POLICY_CHECK"


@dataclass
class PTPEdit:
    column1: str
    column2: str
    modifier_indicator: Optional[str]
    effective_date: Optional[str]
    provider_type: Optional[str]

    @property
    def indicator(self) -> ModifierIndicator:
        return ModifierIndicator.from_raw(self.modifier_indicator)


@dataclass
class MUERule:
    hcpcs_cpt: str
    mue_value: int
    effective_date: Optional[str]
    service_type: Optional[str]


@dataclass
class AOCRule:
    addon_code: str
    primary_code: str
    effective_date: Optional[str]


@dataclass
class ClaimInput:
    cpt_codes: List[str] = field(default_factory=list)
    icd10_codes: List[str] = field(default_factory=list)
    modifiers: List[str] = field(default_factory=list)
    place_of_service: Optional[str] = None
    revenue_codes: List[str] = field(default_factory=list)
    claim_date: Optional[str] = None      # YYYY-MM-DD
    provider_type: Optional[str] = None   # practitioner | hospital | dme | asc
    units: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ClaimInput":
        return cls(
            cpt_codes=list(payload.get("cpt_codes") or []),
            icd10_codes=list(payload.get("icd10_codes") or []),
            modifiers=list(payload.get("modifiers") or []),
            place_of_service=payload.get("place_of_service"),
            revenue_codes=list(payload.get("revenue_codes") or []),
            claim_date=payload.get("claim_date"),
            provider_type=payload.get("provider_type"),
            units=dict(payload.get("units") or {}),
        )


@dataclass
class ValidationIssue:
    type: IssueType
    message: str
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type.value, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    passes: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def risk_score(self) -> int:
        return min(100, 30 * len(self.errors) + 10 * len(self.warnings))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "passes": [i.to_dict() for i in self.passes],
            "is_valid": self.is_valid,
            "risk_score": self.risk_score,
        }
