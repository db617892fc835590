"""Cooperative timer loop driven from the coordinating context."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(eq=False)
class TimerToken:
    name: str
    interval_ms: float
    callback: Callable[[], None] = field(repr=False)
    cancelled: bool = False


class TimerLoop:
    """Runs re-arming periodic callbacks when ``run_pending`` is called.

    A callback runs only from ``run_pending``, so ticks never overlap each
    other. ``schedule`` and ``cancel`` may be called from any thread; a tick
    that is already running when it is cancelled still completes but is not
    re-armed.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, TimerToken]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def schedule(
        self,
        callback: Callable[[], None],
        interval_ms: float,
        initial_delay_ms: float,
        name: str = "",
    ) -> TimerToken:
        token = TimerToken(
            name=name or getattr(callback, "__name__", "timer"),
            interval_ms=interval_ms,
            callback=callback,
        )
        with self._lock:
            heapq.heappush(self._heap, (self._clock() + initial_delay_ms, next(self._seq), token))
        return token

    def cancel(self, token: Optional[TimerToken]) -> None:
        if token is None:
            return
        with self._lock:
            token.cancelled = True
            self._heap = [entry for entry in self._heap if entry[2] is not token]
            heapq.heapify(self._heap)

    def next_due(self) -> Optional[float]:
        with self._lock:
            return self._heap[0][0] if self._heap else None

    def active(self) -> int:
        with self._lock:
            return len(self._heap)

    def run_pending(self) -> int:
        """Fire every timer that is due now. Returns the number of ticks."""
        fired = 0
        now = self._clock()
        while True:
            with self._lock:
                if not self._heap or self._heap[0][0] > now:
                    return fired
                _, _, token = heapq.heappop(self._heap)
            if token.cancelled:
                continue
            token.callback()
            fired += 1
            with self._lock:
                if not token.cancelled:
                    due = self._clock() + token.interval_ms
                    heapq.heappush(self._heap, (due, next(self._seq), token))
