from __future__ import annotations

import logging
import os
import threading
from typing import List, Optional, Protocol

from diagramloop.aggregator import ValidationAggregator
from diagramloop.constraints import DEFAULT_DIAGRAM_CONSTRAINTS, ConstraintSet
from diagramloop.errors import GenerationFailure, LoopCancelled
from diagramloop.feedback import FeedbackEncoder
from diagramloop.llm_client import LLMArtifactGenerator
from diagramloop.models import (
    Artifact,
    FeedbackLoopOutcome,
    GenerationRequest,
    IterationRecord,
    TerminationReason,
)

log = logging.getLogger(__name__)

try:
    DEFAULT_MAX_ITERATIONS = max(1, int(os.getenv("MAX_ITERATIONS", "5")))
except Exception:
    DEFAULT_MAX_ITERATIONS = 5


class ArtifactGenerator(Protocol):
    def generate(
        self,
        request: GenerationRequest,
        constraints: ConstraintSet,
        prior_artifact: Optional[str] = None,
        correction: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str: ...


class FeedbackLoopController:
    """generate -> validate -> encode -> regenerate, bounded by max_iterations.

    Termination:
      - a candidate passes validation            -> validated
      - max_iterations candidates all fail       -> iteration_budget_exhausted,
                                                    latest candidate returned
      - the generator raises GenerationFailure   -> generation_failed, the
                                                    previous candidate (if any)
                                                    returned
      - cancel_event is set                      -> cancelled
    """

    def __init__(
        self,
        generator: ArtifactGenerator,
        aggregator: ValidationAggregator,
        encoder: Optional[FeedbackEncoder] = None,
    ) -> None:
        self.generator = generator
        self.aggregator = aggregator
        self.encoder = encoder or FeedbackEncoder()

    def run(
        self,
        request: GenerationRequest,
        constraints: ConstraintSet,
        max_iterations: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> FeedbackLoopOutcome:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

        records: List[IterationRecord] = []
        latest: Optional[Artifact] = None
        prior_issues: Optional[str] = None

        def _finish(reason: TerminationReason, succeeded: bool, error: Optional[str] = None) -> FeedbackLoopOutcome:
            log.info(
                "feedback loop done reason=%s succeeded=%s iterations=%d",
                reason.value,
                succeeded,
                len(records),
            )
            return FeedbackLoopOutcome(
                final_artifact=latest,
                succeeded=succeeded,
                iterations=tuple(records),
                termination_reason=reason,
                error=error,
            )

        def _check_cancel() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise LoopCancelled("Request abandoned by caller")

        try:
            for iteration in range(max_iterations):
                _check_cancel()
                try:
                    content = self.generator.generate(
                        request,
                        constraints,
                        latest.content if latest is not None else None,
                        prior_issues,
                        cancel_event=cancel_event,
                    )
                except GenerationFailure as exc:
                    _check_cancel()
                    log.warning("iteration=%d generation failed: %s", iteration, exc)
                    return _finish(TerminationReason.GENERATION_FAILED, False, str(exc) or "Generation failed")
                _check_cancel()

                candidate = Artifact(content=content, produced_at_iteration=iteration)
                result = self.aggregator.validate(
                    candidate.content,
                    request.instruction,
                    constraints,
                    cancel_event=cancel_event,
                )
                records.append(IterationRecord(index=iteration, artifact=candidate, result=result))
                latest = candidate
                log.info(
                    "iteration=%d passed=%s errors=%d warnings=%d checks=%s",
                    iteration,
                    result.passed,
                    len(result.errors),
                    len(result.warnings),
                    ",".join(result.checks_performed),
                )
                if result.passed:
                    return _finish(TerminationReason.VALIDATED, True)
                prior_issues = self.encoder.encode(result)
        except LoopCancelled as exc:
            log.info("feedback loop cancelled: %s", exc)
            return _finish(TerminationReason.CANCELLED, False, str(exc))

        return _finish(
            TerminationReason.ITERATION_BUDGET_EXHAUSTED,
            False,
            f"Validation still failing after {max_iterations} iteration(s)",
        )


def build_default_controller() -> FeedbackLoopController:
    return FeedbackLoopController(LLMArtifactGenerator(), ValidationAggregator())


def run_feedback_loop(
    request: GenerationRequest,
    constraints: Optional[ConstraintSet] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    cancel_event: Optional[threading.Event] = None,
    controller: Optional[FeedbackLoopController] = None,
) -> FeedbackLoopOutcome:
    """Library entry point: one request, fresh collaborators, no shared state."""
    ctl = controller or build_default_controller()
    return ctl.run(request, constraints or DEFAULT_DIAGRAM_CONSTRAINTS, max_iterations, cancel_event=cancel_event)
