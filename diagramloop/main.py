import asyncio
import logging
import os
import threading
import time
import uuid
from typing import Any, Dict, List, Literal

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from diagramloop import rendering
from diagramloop.aggregator import ValidationAggregator
from diagramloop.constraints import DEFAULT_DIAGRAM_CONSTRAINTS
from diagramloop.controller import DEFAULT_MAX_ITERATIONS, FeedbackLoopController, run_feedback_loop
from diagramloop.llm_client import LLMArtifactGenerator
from diagramloop.llm_client import status as llm_status
from diagramloop.models import ConversationTurn, GenerationRequest, TerminationReason
from diagramloop.review import VisualReviewer

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

MAX_ITERATIONS_CEILING = 10
_DISCONNECT_POLL_SECS = 0.5

app = FastAPI(title="diagramloop")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class ConversationTurnIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class DiagramGenerateRequest(BaseModel):
    instruction: str = Field(..., min_length=10, description="What the diagram should show")
    context_snippets: List[str] = Field(default_factory=list, description="Text already extracted from uploads")
    conversation_history: List[ConversationTurnIn] = Field(default_factory=list)
    previous_diagrams: List[str] = Field(default_factory=list, description="Earlier versions; the last one is revised")
    enable_validation: bool = True
    max_iterations: int = Field(
        default=min(DEFAULT_MAX_ITERATIONS, MAX_ITERATIONS_CEILING), ge=1, le=MAX_ITERATIONS_CEILING
    )

    def to_generation_request(self) -> GenerationRequest:
        return GenerationRequest(
            instruction=self.instruction,
            context_snippets=tuple(self.context_snippets),
            prior_artifact=self.previous_diagrams[-1] if self.previous_diagrams else None,
            conversation_context=tuple(
                ConversationTurn(role=t.role, content=t.content) for t in self.conversation_history
            ),
        )


class DiagramValidateRequest(BaseModel):
    html: str
    instruction: str = ""


def build_controller(enable_validation: bool = True) -> FeedbackLoopController:
    """Fresh collaborators per request; only the render admission limit is shared."""
    return FeedbackLoopController(
        LLMArtifactGenerator(),
        ValidationAggregator(browser_checks=enable_validation),
    )


def build_aggregator() -> ValidationAggregator:
    return ValidationAggregator()


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            log.info("client disconnected; cancelling feedback loop")
            cancel.set()
            return
        await asyncio.sleep(_DISCONNECT_POLL_SECS)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    info = dict(llm_status())
    info["reviewer"] = "gemini" if VisualReviewer().enabled else None
    info["open_render_contexts"] = rendering.open_context_count()
    return info


@app.post("/diagram/generate")
async def generate_diagram(req: DiagramGenerateRequest, request: Request):
    if not llm_status().get("has_token"):
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "Missing LLM credentials", "code": "missing_api_key"},
        )

    controller = build_controller(req.enable_validation)
    iterations = req.max_iterations if req.enable_validation else 1
    cancel = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        outcome = await run_in_threadpool(
            run_feedback_loop,
            req.to_generation_request(),
            DEFAULT_DIAGRAM_CONSTRAINTS,
            iterations,
            cancel,
            controller,
        )
    finally:
        cancel.set()
        watcher.cancel()

    body: Dict[str, Any] = {"success": outcome.succeeded, "html": outcome.content}
    body.update(outcome.summary())
    if outcome.termination_reason is TerminationReason.CANCELLED:
        return JSONResponse(status_code=499, content=body)
    if outcome.termination_reason is TerminationReason.GENERATION_FAILED:
        body["code"] = "generation_failed"
        return JSONResponse(status_code=502, content=body)
    return body


@app.post("/diagram/validate")
def validate_diagram(req: DiagramValidateRequest):
    """
    Run the full validation oracle on caller-supplied markup.
    200 with {"valid": true, ...} when there are no errors, 422 otherwise.
    """
    result = build_aggregator().validate(req.html, req.instruction)
    detail = {
        "valid": result.passed,
        "checks_performed": list(result.checks_performed),
        "issues": [issue.as_log_dict() for issue in result.issues],
    }
    if not result.passed:
        return JSONResponse(status_code=422, content={"detail": detail})
    return {"detail": detail}
