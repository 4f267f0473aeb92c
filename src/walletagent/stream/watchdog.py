from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


class Watchdog:
    """Resettable inactivity timer.

    ``arm`` starts the countdown and every ``reset`` pushes it forward by the
    full timeout. If it runs out, ``on_expire`` is called once. An optional
    ``guard`` is consulted when the timer fires, so a timer callback that was
    already queued when the turn ended does nothing.

    Args:
        timeout: Seconds of silence tolerated before expiry.
        on_expire: Called with no arguments on expiry.
        guard: Returns False when expiry should be ignored.
    """

    def __init__(
        self,
        timeout: float,
        on_expire: Callable[[], None],
        guard: Callable[[], bool] | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"Watchdog timeout must be positive, got {timeout}")
        self.timeout = timeout
        self._on_expire = on_expire
        self._guard = guard
        self._handle: asyncio.TimerHandle | None = None
        self._generation = 0
        self._stopped = False
        self._expired = False

    def arm(self) -> None:
        """Start, or restart, the countdown."""
        if self._stopped:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire, generation)

    def reset(self) -> None:
        """Push expiry forward after observed activity."""
        if self._handle is not None:
            self.arm()

    def cancel(self) -> None:
        """Stop the watchdog for good."""
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        # A superseded or cancelled timer can still be queued on the loop.
        if self._stopped or generation != self._generation:
            return
        self._handle = None
        if self._guard is not None and not self._guard():
            return
        self._stopped = True
        self._expired = True
        logger.warning("Stream watchdog expired after %.1fs of inactivity", self.timeout)
        self._on_expire()

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def expired(self) -> bool:
        return self._expired
