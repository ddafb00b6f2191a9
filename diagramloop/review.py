from __future__ import annotations

import base64
import json
import logging
import os
import re
import threading
from typing import Any, Dict, List, Optional

import requests

from diagramloop.errors import LoopCancelled, ReviewFailure
from diagramloop.llm_client import call_abandonable, extract_gemini_text
from diagramloop.models import Category, ValidationIssue
from diagramloop.prompts import build_visual_review_prompt

log = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_REVIEW_MODEL = os.getenv("GEMINI_REVIEW_MODEL", "gemini-2.5-flash").strip()
GEMINI_REVIEW_ENDPOINT = (
    f"https://generativelanguage.googleapis.com/v1beta/models/{GEMINI_REVIEW_MODEL}:generateContent"
    if GEMINI_REVIEW_MODEL
    else ""
)
VISUAL_REVIEW_ENABLED = os.getenv("VISUAL_REVIEW_ENABLED", "1").lower() in {"1", "true", "yes", "on"}
try:
    REVIEW_TIMEOUT_SECS = float(os.getenv("REVIEW_TIMEOUT_SECS", "15"))
except Exception:
    REVIEW_TIMEOUT_SECS = 15.0

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _visual_review_active() -> bool:
    return bool(VISUAL_REVIEW_ENABLED and GEMINI_API_KEY and GEMINI_REVIEW_ENDPOINT)


def parse_review_text(text: str) -> Dict[str, Any]:
    """Decode the reviewer's {isValid, issues} verdict; raise ReviewFailure."""
    t = (text or "").strip()
    m = _FENCE_RE.search(t)
    if m:
        t = m.group(1).strip()
    try:
        data = json.loads(t)
    except ValueError:
        start, end = t.find("{"), t.rfind("}")
        if start == -1 or end <= start:
            raise ReviewFailure("Review response is not JSON")
        try:
            data = json.loads(t[start : end + 1])
        except ValueError as exc:
            raise ReviewFailure("Review response is not JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("isValid"), bool):
        raise ReviewFailure("Review response missing boolean isValid")
    issues = data.get("issues") or []
    if not isinstance(issues, list):
        raise ReviewFailure("Review response issues is not a list")
    return {"isValid": data["isValid"], "issues": [str(i).strip() for i in issues if str(i).strip()]}


class VisualReviewer:
    """Advisory semantic check of a screenshot by a vision model.

    Never fails validation on its own account: transport errors and
    unparsable verdicts produce zero issues.
    """

    @property
    def enabled(self) -> bool:
        return _visual_review_active()

    def _call(self, screenshot: bytes, instruction: str) -> Dict[str, Any]:
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": build_visual_review_prompt(instruction)},
                        {
                            "inlineData": {
                                "mimeType": "image/png",
                                "data": base64.b64encode(screenshot).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.0,
                "maxOutputTokens": 800,
                "responseMimeType": "application/json",
            },
        }
        try:
            resp = requests.post(
                GEMINI_REVIEW_ENDPOINT,
                params={"key": GEMINI_API_KEY},
                json=body,
                timeout=REVIEW_TIMEOUT_SECS,
            )
        except requests.RequestException as exc:
            raise ReviewFailure(f"Review request error: {exc!r}") from exc
        if resp.status_code != 200:
            try:
                msg = resp.text[:400]
            except Exception:
                msg = str(resp.status_code)
            raise ReviewFailure(f"Review HTTP {resp.status_code}: {msg}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ReviewFailure("Review returned a non-JSON body") from exc
        text = extract_gemini_text(payload)
        if not text:
            raise ReviewFailure("Review returned empty content")
        return parse_review_text(text)

    def review(
        self,
        screenshot: Optional[bytes],
        instruction: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ValidationIssue]:
        if not screenshot or not self.enabled:
            return []
        try:
            verdict = call_abandonable(
                self._call, screenshot, instruction, cancel_event=cancel_event, what="visual review"
            )
        except LoopCancelled:
            raise
        except ReviewFailure as exc:
            log.warning("Visual review skipped: %s", exc)
            return []
        except Exception:
            log.exception("Visual review crashed; skipping")
            return []
        is_valid = verdict["isValid"]
        make = ValidationIssue.warning if is_valid else ValidationIssue.error
        issues = [make(Category.VISUAL, text) for text in verdict["issues"]]
        log.info("Visual review isValid=%s issues=%d", is_valid, len(issues))
        return issues
