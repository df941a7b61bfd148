"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Single-slot request gate for registry clients.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Optional


class RateLimiter:
    """Enforce a minimum delay between consecutive outbound requests.

    The gate holds a single slot. :meth:`acquire` blocks until the slot is
    free and at least ``min_interval_seconds`` have elapsed since the
    previous holder called :meth:`release`. The interval is therefore
    measured from the *end* of the previous request, so slow responses do
    not let the next call start early.
    """

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        *,
        time_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must not be negative.")

        self._min_interval = float(min_interval_seconds)
        self._time_fn = time_fn or time.monotonic
        self._sleep_fn = sleep_fn or time.sleep

        self._slot = threading.Lock()
        self._last_release: Optional[float] = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def acquire(self) -> None:
        """Block until the slot is free and the interval has elapsed."""
        self._slot.acquire()
        if self._last_release is None:
            return

        wait_time = self._min_interval - (
            self._time_fn() - self._last_release
        )
        if wait_time > 0:
            # The slot stays held while sleeping so later callers queue up.
            self._sleep_fn(wait_time)

    def release(self) -> None:
        """Record the end of the current request and free the slot."""
        self._last_release = self._time_fn()
        self._slot.release()
