from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

# call_later-compatible: schedule(delay, callback) -> handle with .cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class DeltaCoalescer:
    """Batches answer tokens into rate-limited render updates.

    Every render receives the full text appended so far, so nothing is lost
    when several tokens land between two renders. Enforces a maximum render
    rate (default 60 per second).

    Args:
        render: Callable(text) invoked with the accumulated text. May return
                a coroutine, which is scheduled as a task.
        min_interval: Minimum seconds between renders.
        schedule: call_later-style scheduler. Defaults to the running loop.
    """

    def __init__(
        self,
        render: Callable[[str], Any],
        min_interval: float = 1.0 / 60.0,
        schedule: Scheduler | None = None,
    ) -> None:
        self._render = render
        self._min_interval = min_interval
        self._schedule = schedule or _loop_call_later
        self._text: str = ""
        self._rendered: str = ""
        self._handle: Any = None
        self._last_render_time: float = 0.0
        self._closed: bool = False

    def append(self, text: str) -> None:
        """Add *text* and schedule a render if one is not already pending."""
        if self._closed or not text:
            return
        self._text += text
        if self._handle is None:
            elapsed = time.monotonic() - self._last_render_time
            delay = max(0.0, self._min_interval - elapsed)
            self._handle = self._schedule(delay, self._flush)

    def _flush(self) -> None:
        self._handle = None
        # Timer may fire after close() raced with it
        if self._closed:
            return
        self._emit()

    def _emit(self) -> None:
        if self._text == self._rendered:
            return
        self._rendered = self._text
        self._last_render_time = time.monotonic()
        self._call_render(self._text)

    def _call_render(self, text: str) -> None:
        result = self._render(text)
        if inspect.iscoroutine(result):
            asyncio.create_task(result)

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush_sync(self) -> None:
        """Render any text not yet rendered, immediately."""
        self._cancel_pending()
        if not self._closed:
            self._emit()

    def reset(self) -> None:
        """Discard all text, e.g. when a partial answer is retracted."""
        self._cancel_pending()
        had_render = bool(self._rendered)
        self._text = ""
        self._rendered = ""
        if had_render and not self._closed:
            self._call_render("")

    def close(self) -> None:
        """Stop rendering; later appends and pending timers are ignored."""
        self._cancel_pending()
        self._closed = True

    @property
    def text(self) -> str:
        """Everything appended since the last reset."""
        return self._text

    @property
    def pending(self) -> bool:
        """True if there is text that has not been rendered yet."""
        return self._text != self._rendered

    @property
    def closed(self) -> bool:
        return self._closed
