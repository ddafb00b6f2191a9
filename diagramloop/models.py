from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Category(str, Enum):
    STRUCTURAL = "structural"
    RENDERING = "rendering"
    RESPONSIVE = "responsive"
    ACCESSIBILITY = "accessibility"
    VISUAL = "visual"


class TerminationReason(str, Enum):
    VALIDATED = "validated"
    ITERATION_BUDGET_EXHAUSTED = "iteration_budget_exhausted"
    GENERATION_FAILED = "generation_failed"
    CANCELLED = "cancelled"


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: str


class GenerationRequest(BaseModel):
    """What the caller wants drawn, plus any context gathered upstream."""

    model_config = ConfigDict(frozen=True)

    instruction: str
    context_snippets: Tuple[str, ...] = ()
    prior_artifact: Optional[str] = None
    conversation_context: Tuple[ConversationTurn, ...] = ()


class Artifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    produced_at_iteration: int = Field(default=0, ge=0)


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Severity
    category: Category
    message: str

    @classmethod
    def error(cls, category: Category, message: str) -> "ValidationIssue":
        return cls(severity=Severity.ERROR, category=category, message=message)

    @classmethod
    def warning(cls, category: Category, message: str) -> "ValidationIssue":
        return cls(severity=Severity.WARNING, category=category, message=message)

    def as_log_dict(self) -> Dict[str, str]:
        return {"severity": self.severity.value, "category": self.category.value, "message": self.message}


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"


class ViewportMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_horizontal_overflow: bool = False
    dom_node_count: int = 0
    images_missing_alt: int = 0
    unlabeled_buttons: int = 0
    landmark_count: int = 0


class RenderSnapshot(BaseModel):
    """Everything captured from one sandboxed render of a candidate."""

    model_config = ConfigDict(frozen=True)

    screenshot: Optional[bytes] = None
    console_messages: Tuple[str, ...] = ()
    page_errors: Tuple[str, ...] = ()
    viewports: Tuple[Viewport, ...] = ()
    per_viewport_metrics: Dict[str, ViewportMetrics] = Field(default_factory=dict)


def _has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.severity is Severity.ERROR for issue in issues)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    issues: Tuple[ValidationIssue, ...] = ()
    snapshot: Optional[bytes] = None
    checks_performed: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def _passed_matches_issues(self) -> "ValidationResult":
        if self.passed == _has_errors(self.issues):
            raise ValueError("passed must be true exactly when no issue has severity=error")
        return self

    @classmethod
    def from_issues(
        cls,
        issues: Iterable[ValidationIssue],
        snapshot: Optional[bytes] = None,
        checks_performed: Iterable[str] = (),
    ) -> "ValidationResult":
        issue_list = tuple(issues)
        checks: List[str] = []
        for label in checks_performed:
            if label not in checks:
                checks.append(label)
        return cls(
            passed=not _has_errors(issue_list),
            issues=issue_list,
            snapshot=snapshot,
            checks_performed=tuple(checks),
        )

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]


class IterationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    artifact: Artifact
    result: ValidationResult


class FeedbackLoopOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    final_artifact: Optional[Artifact] = None
    succeeded: bool
    iterations: Tuple[IterationRecord, ...] = ()
    termination_reason: TerminationReason
    error: Optional[str] = None

    @property
    def content(self) -> Optional[str]:
        return self.final_artifact.content if self.final_artifact is not None else None

    @property
    def validation_incomplete(self) -> bool:
        return not self.succeeded

    def summary(self) -> Dict[str, object]:
        """Compact, JSON-friendly view used by the HTTP layer and logs."""
        return {
            "succeeded": self.succeeded,
            "termination_reason": self.termination_reason.value,
            "validation_incomplete": self.validation_incomplete,
            "error": self.error,
            "iterations": [
                {
                    "index": rec.index,
                    "passed": rec.result.passed,
                    "checks_performed": list(rec.result.checks_performed),
                    "issues": [issue.as_log_dict() for issue in rec.result.issues],
                }
                for rec in self.iterations
            ],
        }
