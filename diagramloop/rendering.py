from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from playwright.sync_api import sync_playwright

from diagramloop.errors import LoopCancelled, RenderingFailure
from diagramloop.models import RenderSnapshot, Viewport, ViewportMetrics

log = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def parse_viewports(raw: str) -> List[Viewport]:
    """Parse "375x667,1024x768" into viewports, skipping malformed entries."""
    out: List[Viewport] = []
    for chunk in (raw or "").split(","):
        chunk = chunk.strip().lower()
        if "x" not in chunk:
            continue
        w, _, h = chunk.partition("x")
        try:
            out.append(Viewport(width=int(w), height=int(h)))
        except Exception:
            log.warning("render: ignoring malformed viewport %r", chunk)
    return out


RENDER_TIMEOUT_SECS = _env_float("RENDER_TIMEOUT_SECS", 15.0)
RENDER_SETTLE_MS = _env_int("RENDER_SETTLE_MS", 1500)
RENDER_VIEWPORT_SETTLE_MS = _env_int("RENDER_VIEWPORT_SETTLE_MS", 300)
RENDER_MAX_CONTEXTS = max(1, _env_int("RENDER_MAX_CONTEXTS", 2))
DEFAULT_VIEWPORTS: List[Viewport] = parse_viewports(
    os.getenv("RENDER_VIEWPORTS", "375x667,768x1024,1280x720")
) or [Viewport(width=1280, height=720)]

_ADMISSION = threading.BoundedSemaphore(RENDER_MAX_CONTEXTS)
_OPEN_LOCK = threading.Lock()
_OPEN_CONTEXTS = 0
_SLICE_MS = 100

_ICON_INIT_JS = """() => {
  if (typeof window.lucide !== 'undefined' && window.lucide.createIcons) {
    window.lucide.createIcons();
  }
}"""

_METRICS_JS = """() => {
  const root = document.documentElement;
  const body = document.body;
  const overflow = (root && root.scrollWidth > root.clientWidth) ||
                   (body && body.scrollWidth > body.clientWidth);
  const imgs = Array.from(document.querySelectorAll('img'));
  const buttons = Array.from(document.querySelectorAll('button'));
  const landmarks = document.querySelectorAll(
    'main, header, nav, section, article, aside, footer, ' +
    '[role=main], [role=banner], [role=navigation], [role=region], [role=contentinfo]'
  );
  return {
    overflow: Boolean(overflow),
    nodes: document.getElementsByTagName('*').length,
    imagesMissingAlt: imgs.filter((img) => !(img.getAttribute('alt') || '').trim()).length,
    unlabeledButtons: buttons.filter((b) =>
      !(b.textContent || '').trim() &&
      !b.getAttribute('aria-label') &&
      !b.getAttribute('aria-labelledby') &&
      !b.getAttribute('title')).length,
    landmarks: landmarks.length,
  };
}"""


def open_context_count() -> int:
    with _OPEN_LOCK:
        return _OPEN_CONTEXTS


def _adjust_open(delta: int) -> None:
    global _OPEN_CONTEXTS
    with _OPEN_LOCK:
        _OPEN_CONTEXTS += delta


def _acquire_slot(cancel_event: Optional[threading.Event]) -> None:
    waited = False
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise LoopCancelled("Cancelled while waiting for a rendering slot")
        if _ADMISSION.acquire(timeout=_SLICE_MS / 1000.0):
            if waited:
                log.info("render: admitted after queueing")
            return
        if not waited:
            log.info("render: %d sandboxes busy; queueing", RENDER_MAX_CONTEXTS)
            waited = True


def _close_quietly(resource: Any, what: str) -> None:
    if resource is None:
        return
    try:
        resource.close()
    except Exception as exc:
        log.debug("render: closing %s failed: %r", what, exc)


def _metrics_from(raw: Any) -> ViewportMetrics:
    data = raw if isinstance(raw, dict) else {}
    return ViewportMetrics(
        has_horizontal_overflow=bool(data.get("overflow")),
        dom_node_count=int(data.get("nodes") or 0),
        images_missing_alt=int(data.get("imagesMissingAlt") or 0),
        unlabeled_buttons=int(data.get("unlabeledButtons") or 0),
        landmark_count=int(data.get("landmarks") or 0),
    )


class RenderingValidator:
    """Loads a candidate in a throwaway headless browser and measures it.

    Each render() call gets its own browser; it is closed on every exit
    path. A process-wide semaphore bounds how many sandboxes exist at once
    and callers beyond the limit wait for a slot.
    """

    def __init__(
        self,
        viewports: Optional[Sequence[Viewport]] = None,
        timeout_secs: float = RENDER_TIMEOUT_SECS,
        settle_ms: int = RENDER_SETTLE_MS,
        viewport_settle_ms: int = RENDER_VIEWPORT_SETTLE_MS,
        launcher: Callable[[], Any] = sync_playwright,
    ) -> None:
        self.viewports = list(viewports or DEFAULT_VIEWPORTS)
        self.timeout_secs = timeout_secs
        self.settle_ms = settle_ms
        self.viewport_settle_ms = viewport_settle_ms
        self._launcher = launcher

    def _remaining_ms(self, deadline: float) -> float:
        """Milliseconds left before the render deadline; raise once it has passed."""
        left = (deadline - time.monotonic()) * 1000
        if left <= 0:
            raise RenderingFailure(f"Rendering timed out after {self.timeout_secs:.0f}s")
        return left

    @contextmanager
    def sandbox(
        self,
        viewport: Viewport,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Tuple[Any, float]]:
        """Yield (page, deadline). The deadline covers launch through screenshot."""
        _acquire_slot(cancel_event)
        _adjust_open(1)
        try:
            deadline = time.monotonic() + self.timeout_secs
            with self._launcher() as pw:
                browser = pw.chromium.launch(headless=True, timeout=self._remaining_ms(deadline))
                try:
                    self._remaining_ms(deadline)
                    context = browser.new_context(viewport={"width": viewport.width, "height": viewport.height})
                    try:
                        page = context.new_page()
                        page.set_default_timeout(self._remaining_ms(deadline))
                        yield page, deadline
                    finally:
                        _close_quietly(context, "context")
                finally:
                    _close_quietly(browser, "browser")
        finally:
            _adjust_open(-1)
            _ADMISSION.release()

    def _settle(
        self,
        page: Any,
        ms: int,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> None:
        remaining = max(0, int(ms))
        while remaining > 0:
            if cancel_event is not None and cancel_event.is_set():
                raise LoopCancelled("Cancelled during render")
            if time.monotonic() > deadline:
                raise RenderingFailure(f"Rendering timed out after {self.timeout_secs:.0f}s")
            step = min(_SLICE_MS, remaining)
            page.wait_for_timeout(step)
            remaining -= step

    def render(
        self,
        markup: str,
        viewports: Optional[Sequence[Viewport]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RenderSnapshot:
        vps = list(viewports or self.viewports)
        if not vps:
            raise ValueError("at least one viewport is required")
        console: List[str] = []
        page_errors: List[str] = []
        metrics: Dict[str, ViewportMetrics] = {}
        started = time.monotonic()

        def _on_console(msg: Any) -> None:
            console.append(f"{msg.type}: {msg.text}")

        def _on_page_error(err: Any) -> None:
            page_errors.append(str(getattr(err, "message", err)))

        try:
            with self.sandbox(vps[0], cancel_event) as (page, deadline):
                page.on("console", _on_console)
                page.on("pageerror", _on_page_error)
                page.set_content(markup, wait_until="domcontentloaded", timeout=self._remaining_ms(deadline))
                self._settle(page, self.settle_ms, deadline, cancel_event)
                self._remaining_ms(deadline)
                page.evaluate(_ICON_INIT_JS)
                for vp in vps:
                    page.set_viewport_size({"width": vp.width, "height": vp.height})
                    self._settle(page, self.viewport_settle_ms, deadline, cancel_event)
                    self._remaining_ms(deadline)
                    metrics[vp.label] = _metrics_from(page.evaluate(_METRICS_JS))
                widest = max(vps, key=lambda v: (v.width, v.height))
                page.set_viewport_size({"width": widest.width, "height": widest.height})
                self._settle(page, self.viewport_settle_ms, deadline, cancel_event)
                screenshot = page.screenshot(full_page=True, type="png", timeout=self._remaining_ms(deadline))
        except (LoopCancelled, RenderingFailure):
            raise
        except Exception as exc:
            log.warning("render: sandbox failed: %r", exc)
            raise RenderingFailure(f"Rendering failed: {exc}") from exc

        log.info(
            "render: ok viewports=%s console=%d page_errors=%d dur_ms=%d",
            [vp.label for vp in vps],
            len(console),
            len(page_errors),
            int((time.monotonic() - started) * 1000),
        )
        return RenderSnapshot(
            screenshot=screenshot,
            console_messages=tuple(console),
            page_errors=tuple(page_errors),
            viewports=tuple(vps),
            per_viewport_metrics=metrics,
        )
