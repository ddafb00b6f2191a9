from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence

from diagramloop.checks import AccessibilityValidator, ResponsiveValidator
from diagramloop.constraints import DEFAULT_DIAGRAM_CONSTRAINTS, ConstraintSet
from diagramloop.errors import LoopCancelled, RenderingFailure
from diagramloop.models import Category, RenderSnapshot, ValidationIssue, ValidationResult, Viewport
from diagramloop.rendering import RenderingValidator
from diagramloop.review import VisualReviewer
from diagramloop.structural import StructuralValidator

log = logging.getLogger(__name__)

_MAX_REPORTED_MESSAGES = 5


def _console_issues(snapshot: RenderSnapshot) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if snapshot.page_errors:
        shown = "; ".join(snapshot.page_errors[:_MAX_REPORTED_MESSAGES])
        issues.append(ValidationIssue.error(Category.RENDERING, f"Uncaught JavaScript errors: {shown}"))
    console_errors = [m[len("error: "):] for m in snapshot.console_messages if m.startswith("error: ")]
    if console_errors:
        shown = "; ".join(console_errors[:_MAX_REPORTED_MESSAGES])
        issues.append(ValidationIssue.warning(Category.RENDERING, f"Console errors detected: {shown}"))
    return issues


class ValidationAggregator:
    """Runs every check in a fixed order and folds the issues into one result.

    Order: structural, rendering, console, responsive, accessibility, visual.
    """

    def __init__(
        self,
        constraints: ConstraintSet = DEFAULT_DIAGRAM_CONSTRAINTS,
        renderer: Optional[RenderingValidator] = None,
        reviewer: Optional[VisualReviewer] = None,
        viewports: Optional[Sequence[Viewport]] = None,
        browser_checks: bool = True,
    ) -> None:
        self.constraints = constraints
        self.browser_checks = browser_checks
        self.renderer = renderer or RenderingValidator()
        self.reviewer = reviewer or VisualReviewer()
        self.viewports = list(viewports) if viewports else None
        self.responsive = ResponsiveValidator()
        self.accessibility = AccessibilityValidator()

    def validate(
        self,
        markup: str,
        instruction: str,
        constraints: Optional[ConstraintSet] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ValidationResult:
        structural = StructuralValidator(constraints or self.constraints)
        issues: List[ValidationIssue] = list(structural.check(markup))
        checks = ["structural"]

        if not self.browser_checks:
            return ValidationResult.from_issues(issues, checks_performed=checks)
        if not structural.is_renderable(markup):
            log.info("validate: artifact not renderable; skipping browser checks")
            return ValidationResult.from_issues(issues, checks_performed=checks)

        try:
            snapshot = self.renderer.render(markup, self.viewports, cancel_event=cancel_event)
        except RenderingFailure as exc:
            issues.append(ValidationIssue.error(Category.RENDERING, str(exc) or "Rendering failed"))
            checks.append("rendering")
            return ValidationResult.from_issues(issues, checks_performed=checks)
        checks.append("rendering")

        issues.extend(_console_issues(snapshot))
        checks.append("console-errors")
        issues.extend(self.responsive.check(snapshot))
        checks.append("responsive")
        issues.extend(self.accessibility.check(markup, snapshot))
        checks.append("accessibility")

        if cancel_event is not None and cancel_event.is_set():
            raise LoopCancelled("Cancelled before visual review")
        if self.reviewer.enabled and snapshot.screenshot:
            issues.extend(self.reviewer.review(snapshot.screenshot, instruction, cancel_event=cancel_event))
            checks.append("visual")

        return ValidationResult.from_issues(issues, snapshot=snapshot.screenshot, checks_performed=checks)
