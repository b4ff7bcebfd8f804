# -*- coding: utf-8 -*-
"""
Timer Module

One-shot timers for the debounced play report, retry backoff and the fetch
safety timeout. Services receive a ``TimerFactory`` so tests can swap in a
manually driven clock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle returned by TimerFactory.schedule"""

    def cancel(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class _ThreadTimerHandle:
    """threading.Timer wrapper whose callback errors are logged, not raised"""

    def __init__(self, delay: float, callback: Callable[[], None], name: str):
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._timer = threading.Timer(delay, self._run)
        self._timer.daemon = True
        self._timer.name = f"Timer-{name}"

    def start(self) -> None:
        self._timer.start()

    def _run(self) -> None:
        if self._cancelled:
            return
        self._fired = True
        try:
            self._callback()
        except Exception as e:
            logger.error("Timer %s callback failed: %s", self._timer.name, e)

    def cancel(self) -> None:
        self._cancelled = True
        self._timer.cancel()

    @property
    def active(self) -> bool:
        return not (self._fired or self._cancelled)


class TimerFactory:
    """
    Creates one-shot timers backed by threading.Timer

    Usage example:
        timers = TimerFactory()
        handle = timers.schedule(5.0, report_play, name="play-report")
        handle.cancel()
    """

    def schedule(
        self,
        delay: float,
        callback: Callable[[], None],
        name: str = "timer",
    ) -> TimerHandle:
        handle = _ThreadTimerHandle(max(0.0, float(delay)), callback, name)
        handle.start()
        return handle

    def now(self) -> float:
        """Monotonic clock in seconds"""
        return time.monotonic()


def cancel_timer(handle: Optional[TimerHandle]) -> None:
    """Cancel a timer handle if there is one"""
    if handle is not None:
        handle.cancel()
