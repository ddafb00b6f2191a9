from __future__ import annotations

import re
from typing import List

from diagramloop.constraints import ConstraintSet
from diagramloop.models import Category, ValidationIssue
from diagramloop.parsing import looks_like_markup

_HTML_TAG_CLASS_RE = re.compile(r"<html\b[^>]*\bclass\s*=", re.IGNORECASE)


def _has_tag(markup: str, tag: str) -> bool:
    return re.search(rf"<{re.escape(tag)}(?:[\s>/]|$)", markup, re.IGNORECASE) is not None


class StructuralValidator:
    """Static, non-rendering checks of artifact text against a ConstraintSet.

    Every violated hard rule yields one error/structural issue; the softer
    conventions (icon initialisation, classes on <html>) yield warnings.
    """

    def __init__(self, constraints: ConstraintSet) -> None:
        self.constraints = constraints

    @staticmethod
    def is_renderable(markup: str) -> bool:
        return looks_like_markup(markup)

    def check(self, markup: str) -> List[ValidationIssue]:
        text = markup or ""
        if not self.is_renderable(text):
            return [ValidationIssue.error(Category.STRUCTURAL, "Artifact contains no renderable HTML markup")]

        c = self.constraints
        issues: List[ValidationIssue] = []
        for tag in c.required_tags:
            if not _has_tag(text, tag):
                issues.append(ValidationIssue.error(Category.STRUCTURAL, f"Missing required HTML tag: <{tag}>"))

        for resource in c.required_resources:
            if resource not in text:
                issues.append(ValidationIssue.error(Category.STRUCTURAL, f"Missing required resource: {resource}"))

        for construct in c.forbidden_constructs:
            if re.search(construct.pattern, text, re.IGNORECASE):
                message = f"Contains forbidden construct: {construct.label}"
                if construct.hint:
                    message = f"{message} - {construct.hint}"
                issues.append(ValidationIssue.error(Category.STRUCTURAL, message))

        if c.icon_init_call:
            lib = c.icon_init_call.split(".", 1)[0]
            if lib and lib in text and c.icon_init_call not in text:
                issues.append(
                    ValidationIssue.warning(Category.STRUCTURAL, f"{lib} used but {c.icon_init_call} is never called")
                )

        if c.forbid_html_tag_classes and _HTML_TAG_CLASS_RE.search(text):
            issues.append(
                ValidationIssue.warning(Category.STRUCTURAL, "Classes found on the <html> tag - move them to <body>")
            )
        return issues
