from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

import requests

from diagramloop.constraints import ConstraintSet
from diagramloop.errors import GenerationFailure, LoopCancelled
from diagramloop.models import GenerationRequest
from diagramloop.parsing import extract_markup
from diagramloop.prompts import build_generation_messages

log = logging.getLogger(__name__)

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "").strip().lower()

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o").strip()
OPENROUTER_ENDPOINT = os.getenv(
    "OPENROUTER_ENDPOINT", "https://openrouter.ai/api/v1/chat/completions"
).strip()

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_GENERATION_MODEL = os.getenv("GEMINI_GENERATION_MODEL", "gemini-2.5-flash").strip()
GEMINI_GENERATION_ENDPOINT = (
    f"https://generativelanguage.googleapis.com/v1beta/models/{GEMINI_GENERATION_MODEL}:generateContent"
)

try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
except Exception:
    TEMPERATURE = 0.7
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4000"))
except Exception:
    LLM_MAX_TOKENS = 4000
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "60"))
except Exception:
    LLM_TIMEOUT_SECS = 60.0


def _active_provider() -> Optional[str]:
    if LLM_PROVIDER == "gemini":
        return "gemini" if GEMINI_API_KEY else None
    if LLM_PROVIDER == "openrouter":
        return "openrouter" if OPENROUTER_API_KEY else None
    if OPENROUTER_API_KEY:
        return "openrouter"
    if GEMINI_API_KEY:
        return "gemini"
    return None


def status() -> Dict[str, Any]:
    provider = _active_provider()
    if provider == "openrouter":
        return {"provider": "openrouter", "model": OPENROUTER_MODEL, "has_token": True}
    if provider == "gemini":
        return {"provider": "gemini", "model": GEMINI_GENERATION_MODEL, "has_token": True}
    return {"provider": None, "model": None, "has_token": False}


def _response_snippet(resp: requests.Response) -> str:
    try:
        return resp.text[:400]
    except Exception:
        return str(resp.status_code)


_CANCEL_POLL_SECS = 0.1


def call_abandonable(
    fn: Callable[..., Any],
    *args: Any,
    cancel_event: Optional[threading.Event] = None,
    what: str = "call",
) -> Any:
    """Run a blocking call on a worker and stop waiting once cancel_event is set.

    The abandoned worker finishes in the background and its result is dropped.
    """
    if cancel_event is None:
        return fn(*args)
    if cancel_event.is_set():
        raise LoopCancelled(f"Cancelled before {what}")
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="diagramloop-io")
    try:
        future = executor.submit(fn, *args)
        while True:
            done, _ = wait([future], timeout=_CANCEL_POLL_SECS, return_when=FIRST_COMPLETED)
            if done:
                return future.result()
            if cancel_event.is_set():
                future.cancel()
                log.info("%s abandoned by caller", what)
                raise LoopCancelled(f"Cancelled during {what}")
    finally:
        executor.shutdown(wait=False)


def _call_openrouter(messages: List[Dict[str, str]]) -> str:
    """Send chat messages to an OpenAI-compatible endpoint and return the text."""
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "X-Title": "diagramloop",
    }
    body = {
        "model": OPENROUTER_MODEL,
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": LLM_MAX_TOKENS,
    }
    try:
        resp = requests.post(OPENROUTER_ENDPOINT, headers=headers, json=body, timeout=LLM_TIMEOUT_SECS)
    except requests.Timeout as exc:
        log.warning("OpenRouter generation timed out after %.0fs", LLM_TIMEOUT_SECS)
        raise GenerationFailure("Generation request timed out") from exc
    except requests.RequestException as exc:
        log.warning("OpenRouter generation request error: %r", exc)
        raise GenerationFailure(f"Generation request failed: {exc}") from exc

    if resp.status_code != 200:
        log.warning("OpenRouter generation HTTP %s: %s", resp.status_code, _response_snippet(resp))
        raise GenerationFailure(f"Generation service returned HTTP {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        log.warning("OpenRouter generation: non-JSON body")
        raise GenerationFailure("Generation service returned a non-JSON body") from exc

    try:
        text = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not isinstance(text, str) or not text.strip():
        log.warning("OpenRouter generation: empty response text")
        raise GenerationFailure("No content in generation response")
    usage = data.get("usage") or {}
    log.info("OpenRouter generation ok model=%s tokens=%s", OPENROUTER_MODEL, usage.get("total_tokens"))
    return text


def _gemini_contents(messages: List[Dict[str, str]]) -> Dict[str, Any]:
    system_parts = [{"text": m["content"]} for m in messages if m["role"] == "system"]
    contents = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
        for m in messages
        if m["role"] != "system"
    ]
    body: Dict[str, Any] = {
        "contents": contents,
        "generationConfig": {"temperature": TEMPERATURE, "maxOutputTokens": LLM_MAX_TOKENS},
    }
    if system_parts:
        body["systemInstruction"] = {"parts": system_parts}
    return body


def extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    """First non-empty text part across candidates, or None."""
    if not isinstance(payload, dict):
        return None
    for cand in payload.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content") or {}
        if not isinstance(content, dict):
            continue
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            txt = part.get("text")
            if isinstance(txt, str) and txt.strip():
                return txt
            blob = part.get("json") or part.get("structValue")
            if blob:
                return json.dumps(blob, ensure_ascii=False)
    return None


def _call_gemini(messages: List[Dict[str, str]]) -> str:
    try:
        resp = requests.post(
            GEMINI_GENERATION_ENDPOINT,
            params={"key": GEMINI_API_KEY},
            json=_gemini_contents(messages),
            timeout=LLM_TIMEOUT_SECS,
        )
    except requests.Timeout as exc:
        log.warning("Gemini generation timed out after %.0fs", LLM_TIMEOUT_SECS)
        raise GenerationFailure("Generation request timed out") from exc
    except requests.RequestException as exc:
        log.warning("Gemini generation request error: %r", exc)
        raise GenerationFailure(f"Generation request failed: {exc}") from exc

    if resp.status_code != 200:
        log.warning("Gemini generation HTTP %s: %s", resp.status_code, _response_snippet(resp))
        raise GenerationFailure(f"Generation service returned HTTP {resp.status_code}")
    try:
        payload = resp.json()
    except ValueError as exc:
        log.warning("Gemini generation: non-JSON body")
        raise GenerationFailure("Generation service returned a non-JSON body") from exc
    text = extract_gemini_text(payload)
    if not text:
        log.warning("Gemini generation: empty content; raw=%s", _response_snippet(resp))
        raise GenerationFailure("No content in generation response")
    return text


class LLMArtifactGenerator:
    """Generation service adapter: prompt in, extracted HTML markup out.

    Any transport error, timeout, non-200 status or response without
    markup raises GenerationFailure. Nothing is retried here.
    """

    def __init__(self, provider: Optional[str] = None) -> None:
        self.provider = provider or _active_provider()

    @property
    def available(self) -> bool:
        return self.provider in {"openrouter", "gemini"}

    def generate(
        self,
        request: GenerationRequest,
        constraints: ConstraintSet,
        prior_artifact: Optional[str] = None,
        correction: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        if not self.available:
            raise GenerationFailure("No generation provider configured")
        messages = build_generation_messages(request, constraints, prior_artifact, correction)
        log.info(
            "generation provider=%s messages=%d repair=%s",
            self.provider,
            len(messages),
            bool(prior_artifact and correction),
        )
        call = _call_gemini if self.provider == "gemini" else _call_openrouter
        text = call_abandonable(call, messages, cancel_event=cancel_event, what="generation")
        try:
            return extract_markup(text)
        except ValueError as exc:
            log.warning("generation output unparsable as markup: %s", (text or "")[:200])
            raise GenerationFailure(str(exc)) from exc
