"""Periodic monitors that observe a capture in progress."""

from __future__ import annotations

from typing import Callable, Optional

from interfaces import CancelToken, CaptureService, Scheduler

BYTES_INTERVAL_MS = 1000
BYTES_DELAY_MS = 100

VOLUME_INTERVAL_MS = 100
VOLUME_DELAY_MS = 1000

CHUNKS_INTERVAL_MS = 1500
CHUNKS_DELAY_MS = CHUNKS_INTERVAL_MS

DOTS = "......"


def make_bar(marker: str, count: int) -> str:
    """Render ``count`` as a prefix of ``marker``, or as digits once it overflows."""
    if count <= 0:
        return ""
    if count >= len(marker):
        return str(count)
    return marker[:count]


def format_size(length: int) -> str:
    if length < 1024:
        return f"{length} B"
    if length < 1024 * 1024:
        return f"{length / 1024:.1f} KB"
    return f"{length / (1024 * 1024):.1f} MB"


class StatusMonitors:
    """Byte, volume/pause and chunk pollers for one recording.

    All three are armed by ``start`` and disarmed together by ``cancel``.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        service: CaptureService,
        request_stop: Callable[[], object],
        auto_stop_after_pause: bool = True,
        on_bytes: Optional[Callable[[str], None]] = None,
        on_chunks: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._scheduler = scheduler
        self._service = service
        self._request_stop = request_stop
        self._auto_stop_after_pause = auto_stop_after_pause
        self._on_bytes = on_bytes
        self._on_chunks = on_chunks
        self._tokens: list[CancelToken] = []

    @property
    def running(self) -> bool:
        return bool(self._tokens)

    def start(self) -> None:
        if self._tokens:
            return
        self._tokens = [
            self._scheduler.schedule(self._tick_bytes, BYTES_INTERVAL_MS, BYTES_DELAY_MS),
            self._scheduler.schedule(self._tick_volume, VOLUME_INTERVAL_MS, VOLUME_DELAY_MS),
            self._scheduler.schedule(self._tick_chunks, CHUNKS_INTERVAL_MS, CHUNKS_DELAY_MS),
        ]

    def cancel(self) -> None:
        tokens, self._tokens = self._tokens, []
        for token in tokens:
            self._scheduler.cancel(token)

    def _tick_bytes(self) -> None:
        if self._on_bytes:
            self._on_bytes(format_size(self._service.accumulated_length()))

    def _tick_volume(self) -> None:
        if self._auto_stop_after_pause and self._service.is_pausing():
            self._request_stop()

    def _tick_chunks(self) -> None:
        if self._on_chunks:
            self._on_chunks(make_bar(DOTS, self._service.chunk_count()))
