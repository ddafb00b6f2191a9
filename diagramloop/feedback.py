from __future__ import annotations

from diagramloop.models import ValidationResult
from diagramloop.prompts import render_template


class FeedbackEncoder:
    """Turns a failed ValidationResult into one correction instruction.

    Errors are listed in the order the aggregator reported them; warnings
    are only mentioned when there are no errors. Output depends on the
    issues alone, so the same result always encodes to the same text.
    """

    template = "feedback.j2"

    def encode(self, result: ValidationResult) -> str:
        errors = result.errors
        items = errors or result.warnings
        return render_template(self.template, items=items, blocking=bool(errors))
