import random

import pytest
from pydantic import ValidationError

from diagramloop.models import (
    Artifact,
    Category,
    FeedbackLoopOutcome,
    IterationRecord,
    Severity,
    TerminationReason,
    ValidationIssue,
    ValidationResult,
)


def _random_issues(rng):
    out = []
    for _ in range(rng.randint(0, 6)):
        severity = rng.choice(list(Severity))
        category = rng.choice(list(Category))
        out.append(ValidationIssue(severity=severity, category=category, message=f"m{rng.randint(0, 99)}"))
    return out


def test_passed_iff_no_error_issue_randomized():
    rng = random.Random(1234)
    for _ in range(300):
        issues = _random_issues(rng)
        result = ValidationResult.from_issues(issues, checks_performed=["structural"])
        has_error = any(i.severity is Severity.ERROR for i in issues)
        assert result.passed is (not has_error)
        assert len(result.errors) + len(result.warnings) == len(issues)


def test_inconsistent_passed_flag_is_rejected():
    err = ValidationIssue.error(Category.STRUCTURAL, "broken")
    with pytest.raises(ValidationError):
        ValidationResult(passed=True, issues=(err,))
    with pytest.raises(ValidationError):
        ValidationResult(passed=False, issues=())


def test_warnings_only_still_passes():
    warn = ValidationIssue.warning(Category.RESPONSIVE, "overflow")
    result = ValidationResult.from_issues([warn])
    assert result.passed is True
    assert result.warnings == [warn]


def test_checks_performed_are_deduplicated_in_order():
    result = ValidationResult.from_issues([], checks_performed=["structural", "rendering", "structural", "visual"])
    assert result.checks_performed == ("structural", "rendering", "visual")


def test_outcome_summary_is_json_friendly():
    ok = ValidationResult.from_issues([], checks_performed=["structural"])
    art = Artifact(content="<div>x</div>", produced_at_iteration=0)
    outcome = FeedbackLoopOutcome(
        final_artifact=art,
        succeeded=True,
        iterations=(IterationRecord(index=0, artifact=art, result=ok),),
        termination_reason=TerminationReason.VALIDATED,
    )
    summary = outcome.summary()
    assert summary["termination_reason"] == "validated"
    assert summary["validation_incomplete"] is False
    assert summary["iterations"] == [{"index": 0, "passed": True, "checks_performed": ["structural"], "issues": []}]
    assert outcome.content == "<div>x</div>"


def test_outcome_without_artifact_has_no_content():
    outcome = FeedbackLoopOutcome(succeeded=False, termination_reason=TerminationReason.GENERATION_FAILED)
    assert outcome.content is None
    assert outcome.validation_incomplete is True


def test_artifact_iteration_index_is_non_negative():
    with pytest.raises(ValidationError):
        Artifact(content="<p>x</p>", produced_at_iteration=-1)
