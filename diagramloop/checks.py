from __future__ import annotations

import re
from typing import List, Optional

from diagramloop.models import Category, RenderSnapshot, ValidationIssue, ViewportMetrics

_IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ALT_RE = re.compile(r"\balt\s*=\s*(\"([^\"]*)\"|'([^']*)'|([^\s>]+))", re.IGNORECASE)
_LANDMARK_RE = re.compile(
    r"<(?:main|header|nav|section|article|aside|footer)\b"
    r"|\brole\s*=\s*[\"']?(?:main|banner|navigation|region|contentinfo)\b",
    re.IGNORECASE,
)
_BUTTON_RE = re.compile(r"<button\b([^>]*)>([\s\S]*?)</button\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_BUTTON_LABEL_RE = re.compile(r"\b(?:aria-label|aria-labelledby|title)\s*=", re.IGNORECASE)


class ResponsiveValidator:
    """One warning per viewport whose layout scrolls sideways."""

    def check(self, snapshot: RenderSnapshot) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for vp in snapshot.viewports:
            m = snapshot.per_viewport_metrics.get(vp.label)
            if m is not None and m.has_horizontal_overflow:
                issues.append(
                    ValidationIssue.warning(
                        Category.RESPONSIVE,
                        f"Horizontal overflow detected at {vp.label} viewport ({vp.width}px wide)",
                    )
                )
        return issues


def _text_images_missing_alt(markup: str) -> int:
    missing = 0
    for tag in _IMG_RE.findall(markup):
        m = _ALT_RE.search(tag)
        value = next((g for g in m.groups()[1:] if g is not None), "") if m else ""
        if not value.strip():
            missing += 1
    return missing


def _text_unlabeled_buttons(markup: str) -> int:
    count = 0
    for attrs, inner in _BUTTON_RE.findall(markup):
        if _BUTTON_LABEL_RE.search(attrs):
            continue
        if _TAG_RE.sub("", inner).strip():
            continue
        count += 1
    return count


class AccessibilityValidator:
    """Alt text, semantic sectioning and button names.

    Prefers live DOM metrics (scripts may add elements) and falls back to
    scanning the artifact text. Contrast is left to the visual reviewer.
    """

    def _dom_metrics(self, snapshot: Optional[RenderSnapshot]) -> Optional[ViewportMetrics]:
        if snapshot is None:
            return None
        for vp in snapshot.viewports:
            m = snapshot.per_viewport_metrics.get(vp.label)
            if m is not None:
                return m
        return None

    def check(self, markup: str, snapshot: Optional[RenderSnapshot] = None) -> List[ValidationIssue]:
        text = markup or ""
        dom = self._dom_metrics(snapshot)
        if dom is not None:
            missing_alt = dom.images_missing_alt
            unlabeled = dom.unlabeled_buttons
            has_landmark = dom.landmark_count > 0
        else:
            missing_alt = _text_images_missing_alt(text)
            unlabeled = _text_unlabeled_buttons(text)
            has_landmark = _LANDMARK_RE.search(text) is not None

        issues: List[ValidationIssue] = []
        if missing_alt:
            issues.append(ValidationIssue.warning(Category.ACCESSIBILITY, f"{missing_alt} image(s) missing alt text"))
        if not has_landmark:
            issues.append(
                ValidationIssue.warning(
                    Category.ACCESSIBILITY,
                    "No semantic sectioning found - wrap content in header/main/section/footer landmarks",
                )
            )
        if unlabeled:
            issues.append(
                ValidationIssue.warning(Category.ACCESSIBILITY, f"{unlabeled} button(s) missing accessible text")
            )
        return issues
