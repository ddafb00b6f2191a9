"""Failure types raised by the generate/validate loop.

Only GenerationFailure ends a request early. RenderingFailure and
ReviewFailure are absorbed into the issue list by the aggregator.
"""
from __future__ import annotations


class DiagramLoopError(Exception):
    """Base class for every error raised by diagramloop."""


class GenerationFailure(DiagramLoopError):
    """The generation service errored, timed out or returned no usable markup."""


class RenderingFailure(DiagramLoopError):
    """The sandboxed renderer timed out or crashed."""


class ReviewFailure(DiagramLoopError):
    """The vision review call errored or returned an unparsable body."""


class LoopCancelled(DiagramLoopError):
    """The caller abandoned the request while a stage was in flight."""
