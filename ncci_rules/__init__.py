"""CMS NCCI edit ingestion and claim validation."""
from .build import build_latest
from .models import ClaimInput, IssueType, ValidationIssue, ValidationResult
from .store import RuleRepository, SQLiteRuleRepository
from .validator import validate_claim

__all__ = [
    "build_latest",
    "ClaimInput",
    "IssueType",
    "ValidationIssue",
    "ValidationResult",
    "RuleRepository",
    "SQLiteRuleRepository",
    "validate_claim",
]
