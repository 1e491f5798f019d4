"""
NCCI claim validation.

`validate_claim` runs every check against one claim and accumulates typed
issues into errors / warnings / passes. It never raises for a malformed claim;
only a rule-store failure propagates. Codes missing from a rule table are
simply not checked by that table.
"""
import logging
import re
from collections import defaultdict
from datetime import date, datetime
from itertools import combinations
from typing import Any, Dict, List, Optional, Union

from .models import (
    AOCRule,
    ClaimInput,
    IssueType,
    ModifierIndicator,
    MUERule,
    PTPEdit,
    ValidationIssue,
    ValidationResult,
)
from .store import RuleRepository

logger = logging.getLogger(__name__)

MODIFIER_RE = re.compile(r"^[A-Z0-9]{2}$")
REVENUE_CODE_RE = re.compile(r"^[0-9]{3}$")
ICD10_RE = re.compile(r"^[A-TV-Z][0-9][0-9A-Z](\.[0-9A-Z]{1,4})?$")

BYPASS_MODIFIERS = ("59", "XE", "XP", "XS", "XU")
# laterality, bilateral and multiple-procedure modifiers are mutually exclusive on a claim
ANATOMICAL_MODIFIERS = ("LT", "RT", "50", "51")

# CMS Place of Service code set
PLACE_OF_SERVICE_CODES = frozenset(
    ["01", "02", "03", "04", "05", "06", "07", "08", "09", "10"]
    + [str(n) for n in range(11, 28)]
    + ["31", "32", "33", "34", "41", "42", "49", "50", "51", "52", "53", "54", "55", "56", "57", "58",
       "60", "61", "62", "65", "66", "71", "72", "81", "99"]
)

POLICY_QUESTIONS = {
    "medical_necessity": "Do the billed diagnoses establish medical necessity for each procedure?",
    "coverage": "Is each procedure a covered benefit for this payer and place of service?",
    "lcd_ncd": "Does an LCD or NCD (or commercial policy) restrict the procedure/diagnosis pairing?",
    "documentation": "What documentation must support the procedures billed?",
}


def _clean_codes(codes: Optional[List[str]]) -> List[str]:
    return [c.strip().upper() for c in (codes or []) if c and c.strip()]


def check_modifiers(modifiers: List[str], result: ValidationResult) -> None:
    mods = [m.strip().upper() for m in modifiers if m is not None]
    invalid = [m for m in mods if not MODIFIER_RE.match(m)]
    if invalid:
        result.errors.append(ValidationIssue(
            IssueType.MODIFIER_INVALID,
            f"Invalid modifier format: {', '.join(invalid)} (expected two alphanumeric characters).",
            invalid,
        ))

    present = sorted(set(mods) & set(ANATOMICAL_MODIFIERS))
    for a, b in combinations(present, 2):
        result.warnings.append(ValidationIssue(
            IssueType.MODIFIER_INAPPROPRIATE,
            f"Modifiers {a} and {b} should not be reported together.",
            {"modifiers": [a, b]},
        ))


def check_place_of_service(pos: Optional[str], result: ValidationResult) -> None:
    if pos is None:
        return
    if str(pos).strip() not in PLACE_OF_SERVICE_CODES:
        result.errors.append(ValidationIssue(
            IssueType.POS_INVALID,
            f"Place of service {pos!r} is not a recognized CMS place-of-service code.",
            {"place_of_service": pos},
        ))


def check_revenue_codes(revenue_codes: List[str], result: ValidationResult) -> None:
    invalid = [r for r in revenue_codes if not REVENUE_CODE_RE.match(str(r).strip())]
    if invalid:
        result.errors.append(ValidationIssue(
            IssueType.REVENUE_CODE_INVALID,
            f"Invalid revenue code format: {', '.join(map(str, invalid))} (expected three digits).",
            invalid,
        ))


def check_icd10_format(icd_codes: List[str], result: ValidationResult) -> None:
    bad = [c for c in icd_codes if not ICD10_RE.match(c)]
    if bad:
        result.errors.append(ValidationIssue(
            IssueType.ICD_FORMAT, f"Invalid ICD-10-CM format: {', '.join(bad)}", bad))
    else:
        result.passes.append(ValidationIssue(
            IssueType.ICD_FORMAT, "ICD-10-CM codes are syntactically valid."))


def _to_date(value: Optional[str]) -> Optional[date]:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError:
        return None


def check_effective_dates(claim_date: Optional[str], rows: List[Union[PTPEdit, MUERule, AOCRule]],
                          result: ValidationResult) -> None:
    """Warn when a rule consulted for this claim only takes effect after the date of service."""
    if claim_date:
        try:
            service_date = datetime.strptime(claim_date.strip(), "%Y-%m-%d").date()
        except ValueError:
            result.warnings.append(ValidationIssue(
                IssueType.EFFECTIVE_DATE_INVALID,
                f"Claim date {claim_date!r} is not a YYYY-MM-DD date; rule effective dates not checked.",
                {"claim_date": claim_date},
            ))
            return
    else:
        service_date = date.today()

    dates = [d for d in (_to_date(r.effective_date) for r in rows) if d]
    latest = max(dates, default=None)
    if latest and latest > service_date:
        result.warnings.append(ValidationIssue(
            IssueType.EFFECTIVE_DATE_INVALID,
            f"Some NCCI edits applied here take effect {latest.isoformat()}, "
            f"after the date of service {service_date.isoformat()}.",
            {"claim_date": service_date.isoformat(), "latest_effective_date": latest.isoformat()},
        ))


def check_aoc(codes: List[str], aoc_rows: List[AOCRule], result: ValidationResult) -> None:
    primaries: Dict[str, set] = defaultdict(set)
    for row in aoc_rows:
        primaries[row.addon_code].add(row.primary_code)
    billed = set(codes)
    for code in codes:
        if code not in primaries:
            continue
        if primaries[code] & billed:
            result.passes.append(ValidationIssue(IssueType.AOC, f"Add-on code {code}: primary present."))
        else:
            required = sorted(primaries[code])
            result.errors.append(ValidationIssue(
                IssueType.AOC_PRIMARY_MISSING,
                f"Add-on code {code} requires an allowed primary code ({', '.join(required)}) on the same claim.",
                {"addon": code, "requiredPrimaries": required},
            ))


def check_mue(codes: List[str], units: Dict[str, int], mue_rows: List[MUERule], scope: Optional[str],
              result: ValidationResult) -> None:
    limits: Dict[str, int] = {}
    for row in mue_rows:
        # several service types can match an unscoped lookup: keep the tightest
        limits[row.hcpcs_cpt] = min(row.mue_value, limits.get(row.hcpcs_cpt, row.mue_value))
    label = scope or "any service type"
    for code in codes:
        if code not in limits:
            continue
        billed, limit = units.get(code, 1), limits[code]
        if billed > limit:
            result.errors.append(ValidationIssue(
                IssueType.MUE_EXCEEDED,
                f"CPT {code} units {billed} exceed MUE limit {limit} for {label}.",
                {"code": code, "units": billed, "mue": limit},
            ))
        else:
            result.passes.append(ValidationIssue(
                IssueType.MUE, f"CPT {code} units={billed} within MUE limit ({limit})."))


def check_ptp(codes: List[str], modifiers: List[str], ptp_rows: List[PTPEdit], scope: Optional[str],
              result: ValidationResult) -> None:
    edits: Dict[tuple, PTPEdit] = {}
    for row in ptp_rows:
        edits.setdefault((row.column1, row.column2), row)
    mods = {m.strip().upper() for m in modifiers if m}
    bypassed = any(m in mods for m in BYPASS_MODIFIERS)
    label = scope or "any provider type"

    for i, c1 in enumerate(codes):
        for j, c2 in enumerate(codes):
            if i == j:
                continue
            edit = edits.get((c1, c2))
            if edit is None:
                continue
            raw = (edit.modifier_indicator or "").strip()
            indicator = edit.indicator
            if indicator is ModifierIndicator.DISALLOWED:
                result.errors.append(ValidationIssue(
                    IssueType.PTP_BLOCKED,
                    f"PTP edit blocks billing {c1}+{c2} together for {label} (modifier indicator {raw}).",
                    {"c1": c1, "c2": c2, "indicator": raw},
                ))
            elif indicator is ModifierIndicator.ALLOWED_WITH_MODIFIER:
                if bypassed:
                    result.passes.append(ValidationIssue(
                        IssueType.PTP_BYPASSED, f"PTP edit for {c1}+{c2} bypassed by modifier."))
                else:
                    result.errors.append(ValidationIssue(
                        IssueType.PTP_NEEDS_MODIFIER,
                        f"PTP edit for {c1}+{c2} requires a bypass modifier (59/X{{EPSU}}).",
                        {"c1": c1, "c2": c2, "requiredModifiers": list(BYPASS_MODIFIERS)},
                    ))
            else:
                result.warnings.append(ValidationIssue(
                    IssueType.PTP_UNKNOWN_INDICATOR,
                    f'PTP {c1}+{c2} has unrecognized modifier indicator "{raw}". Treating as potential conflict.',
                    {"c1": c1, "c2": c2, "indicator": raw},
                ))


def check_policy(cpt_codes: List[str], icd_codes: List[str], result: ValidationResult) -> None:
    if not (cpt_codes and icd_codes):
        return
    result.warnings.append(ValidationIssue(
        IssueType.NEEDS_POLICY_CHECK,
        "CPT/ICD medical necessity requires payer-specific policy (LCD/NCD or commercial policy) validation.",
        {
            "cpt_codes": cpt_codes,
            "icd10_codes": icd_codes,
            "questions": [{"topic": k, "question": q} for k, q in POLICY_QUESTIONS.items()],
        },
    ))


def validate_claim(claim: Union[ClaimInput, Dict[str, Any]], repo: RuleRepository,
                   provider_type: Optional[str] = None) -> ValidationResult:
    """Validate one claim against the NCCI rule store.

    The provider/service partition is `provider_type` if given, else the
    claim's own `provider_type`; with neither, lookups span all partitions.
    """
    if isinstance(claim, dict):
        claim = ClaimInput.from_dict(claim)
    scope = provider_type or claim.provider_type
    cpt_codes = _clean_codes(claim.cpt_codes)
    icd_codes = [c.strip() for c in claim.icd10_codes if c and c.strip()]
    modifiers = [m for m in claim.modifiers if m is not None]
    units = {str(k).strip().upper(): int(v) for k, v in (claim.units or {}).items()}

    result = ValidationResult()
    check_modifiers(modifiers, result)
    check_place_of_service(claim.place_of_service, result)
    check_revenue_codes(claim.revenue_codes, result)
    check_icd10_format(icd_codes, result)

    with repo.session() as rules:
        aoc_rows = rules.lookup_aoc(cpt_codes)
        mue_rows = rules.lookup_mue(cpt_codes, scope)
        ptp_rows = rules.lookup_ptp(cpt_codes, scope)

    check_effective_dates(claim.claim_date, [*ptp_rows, *mue_rows, *aoc_rows], result)
    check_aoc(cpt_codes, aoc_rows, result)
    check_mue(cpt_codes, units, mue_rows, scope, result)
    check_ptp(cpt_codes, modifiers, ptp_rows, scope, result)
    check_policy(cpt_codes, icd_codes, result)

    logger.debug(
        f"Validated {len(cpt_codes)} CPT / {len(icd_codes)} ICD codes ({scope or 'all partitions'}): "
        f"{len(result.errors)} errors, {len(result.warnings)} warnings, risk {result.risk_score}"
    )
    return result
