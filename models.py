"""Core data models for a transcription session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SessionState(str, Enum):
    INITIALIZED = "INITIALIZED"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    FINISHED = "FINISHED"


class CaptureState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"


@dataclass
class RecognizerRequest:
    """Caller-supplied request fields. Everything is optional."""

    server_url: str = ""
    grammar_url: str = ""
    grammar_target_lang: str = ""
    max_results: int = 0
    prompt: str = ""
    results_handle: Any = None
    results_payload: Optional[dict[str, Any]] = None
    caller: str = ""
    language_model: str = ""
    language: str = ""


@dataclass(frozen=True)
class RequestConfig:
    server_url: str
    grammar_url: str = ""
    grammar_target_lang: str = ""
    max_results: int = 0
    results_handle: Any = None
    results_payload: Optional[dict[str, Any]] = None
    prompt: str = ""
    caller: str = ""
    user_agent: str = ""
    sample_rate: int = 16000
    max_recording_ms: int = 10_000
    auto_stop_after_pause: bool = True

    @property
    def nbest(self) -> int:
        return self.max_results if self.max_results > 1 else 1


@dataclass(frozen=True)
class CallerOverrides:
    server_url: str = ""
    grammar_url: str = ""
    grammar_lang: str = ""


@dataclass(frozen=True)
class ErrorEvent:
    code: str
    origin: str
    message: str


@dataclass
class SessionOutcome:
    success: bool
    matches: list[str] = field(default_factory=list)
    error: Optional[ErrorEvent] = None


@dataclass
class Session:
    number: int
    client_id: str
    state: SessionState = SessionState.INITIALIZED
    config: Optional[RequestConfig] = None
    start_time: float = 0.0
    outcome: Optional[SessionOutcome] = None

    @property
    def finished(self) -> bool:
        return self.state == SessionState.FINISHED


# Messages carried from background work to the coordinating context.


@dataclass(frozen=True)
class ShowNotification:
    text: str


@dataclass(frozen=True)
class AppendProgressText:
    text: str


@dataclass(frozen=True)
class ShowFatalError:
    text: str


BusMessage = ShowNotification | AppendProgressText | ShowFatalError
