from __future__ import annotations

import os
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from diagramloop.constraints import ConstraintSet
from diagramloop.models import GenerationRequest

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

# Prompt templates are plain text; only .html/.xml templates would be escaped
_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    enable_async=False,
)

_CHAT_ROLES = {"user", "assistant"}


def render_template(name: str, **context) -> str:
    return _env.get_template(name).render(**context).strip()


def build_system_prompt(constraints: ConstraintSet) -> str:
    return render_template(
        "system_prompt.j2",
        rules=(constraints.rules or "").strip(),
        required_resources=list(constraints.required_resources),
        forbidden=list(constraints.forbidden_constructs),
    )


def build_generation_messages(
    request: GenerationRequest,
    constraints: ConstraintSet,
    prior_artifact: Optional[str] = None,
    correction: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Chat messages for one generation call.

    First attempt: system rules, conversation history, then the user request
    (with the request's own prior artifact as "previous version" context).
    Repair attempt: the last candidate is replayed as the assistant turn and
    the encoded correction follows as a new user turn.
    """
    messages: List[Dict[str, str]] = [{"role": "system", "content": build_system_prompt(constraints)}]
    for turn in request.conversation_context:
        role = turn.role if turn.role in _CHAT_ROLES else "user"
        if turn.content.strip():
            messages.append({"role": role, "content": turn.content})

    repairing = bool(prior_artifact) and bool(correction)
    messages.append(
        {
            "role": "user",
            "content": render_template(
                "generation_user.j2",
                instruction=request.instruction.strip(),
                context_snippets=[s for s in request.context_snippets if s and s.strip()],
                previous_version=None if repairing else request.prior_artifact,
            ),
        }
    )
    if repairing:
        messages.append({"role": "assistant", "content": f"```html\n{prior_artifact}\n```"})
        messages.append(
            {
                "role": "user",
                "content": render_template(
                    "correction.j2",
                    feedback=correction,
                    instruction=request.instruction.strip(),
                ),
            }
        )
    return messages


def build_visual_review_prompt(instruction: str) -> str:
    return render_template("visual_review.j2", instruction=(instruction or "").strip())
