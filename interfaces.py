"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from models import CallerOverrides, CaptureState

ResultCallback = Callable[[Optional[list[str]]], None]
BackendErrorCallback = Callable[[int, Optional[BaseException]], None]


class CaptureService(Protocol):
    def connect(self, on_result: ResultCallback, on_error: BackendErrorCallback) -> None: ...

    def disconnect(self) -> None: ...

    def init(
        self,
        sample_rate: int,
        user_agent: str,
        server_url: str,
        grammar_url: str,
        target_lang: str,
        nbest: int,
    ) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def recording(self) -> bytes: ...

    def transcribe(self, raw: bytes) -> None: ...

    def current_state(self) -> CaptureState: ...

    def accumulated_length(self) -> int: ...

    def chunk_count(self) -> int: ...

    def is_pausing(self) -> bool: ...

    def start_time(self) -> float: ...


class CancelToken(Protocol):
    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def schedule(
        self,
        callback: Callable[[], None],
        interval_ms: float,
        initial_delay_ms: float,
    ) -> CancelToken: ...

    def cancel(self, token: CancelToken) -> None: ...


@runtime_checkable
class ForwardingHandle(Protocol):
    @property
    def target(self) -> str: ...

    def send(self, request_code: int, payload: dict[str, Any]) -> None: ...


class PreferenceStore(Protocol):
    def get_client_id(self) -> str: ...

    def get_server_url(self) -> str: ...

    def get_sample_rate(self) -> int: ...

    def get_auto_stop_after_pause(self) -> bool: ...

    def get_auto_stop_after_time(self) -> int: ...

    def get_auto_start(self) -> bool: ...


class OverrideRegistry(Protocol):
    def lookup(self, caller: str) -> CallerOverrides: ...
