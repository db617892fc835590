from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from errors import RESULT_NETWORK_ERROR, ErrorKind, HandleCanceledError, map_error
from message_bus import MessageBus
from models import (
    AppendProgressText,
    CallerOverrides,
    CaptureState,
    RecognizerRequest,
    SessionOutcome,
    SessionState,
    ShowFatalError,
    ShowNotification,
)
from result_channel import FORWARD_REQUEST_CODE
from scheduler import TimerLoop
from session_controller import SessionController


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def advance(loop: TimerLoop, clock: FakeClock, ms: float) -> None:
    target = clock.now + ms
    while True:
        due = loop.next_due()
        if due is None or due > target:
            break
        clock.now = max(clock.now, due)
        loop.run_pending()
    clock.now = target


class FakeCaptureService:
    def __init__(self) -> None:
        self.state = CaptureState.IDLE
        self.length = 0
        self.chunks = 0
        self.pausing = False
        self.matches: Optional[list[str]] = ["hello world"]
        self.error: Optional[tuple[int, Optional[BaseException]]] = None
        self.start_error: Optional[Exception] = None
        self.transcribe_error: Optional[Exception] = None
        self.init_args: Optional[tuple] = None
        self.started = 0
        self.stopped = 0
        self.transcribed: list[bytes] = []
        self.on_result: Optional[Callable] = None
        self.on_error: Optional[Callable] = None

    def connect(self, on_result, on_error) -> None:  # noqa: ANN001
        self.on_result = on_result
        self.on_error = on_error

    def disconnect(self) -> None:
        self.on_result = None
        self.on_error = None

    def init(self, *args: Any) -> None:
        self.init_args = args

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started += 1
        self.state = CaptureState.RECORDING

    def stop(self) -> None:
        self.stopped += 1
        self.state = CaptureState.PROCESSING

    def recording(self) -> bytes:
        return b"\x00\x01" * 800

    def transcribe(self, raw: bytes) -> None:
        self.transcribed.append(raw)
        if self.transcribe_error is not None:
            raise self.transcribe_error
        self.state = CaptureState.IDLE
        if self.error is not None:
            assert self.on_error is not None
            self.on_error(*self.error)
        else:
            assert self.on_result is not None
            self.on_result(self.matches)

    def current_state(self) -> CaptureState:
        return self.state

    def accumulated_length(self) -> int:
        return self.length

    def chunk_count(self) -> int:
        return self.chunks

    def is_pausing(self) -> bool:
        return self.pausing

    def start_time(self) -> float:
        return 0.0


class FakePreferences:
    def __init__(self, **values: Any) -> None:
        self.client_id = "client-1"
        self.server_url = "https://asr.example.com/api"
        self.sample_rate = 16000
        self.auto_stop_after_pause = True
        self.auto_stop_after_time = 10
        self.auto_start = False
        for key, value in values.items():
            setattr(self, key, value)

    def get_client_id(self) -> str:
        return self.client_id

    def get_server_url(self) -> str:
        return self.server_url

    def get_sample_rate(self) -> int:
        return self.sample_rate

    def get_auto_stop_after_pause(self) -> bool:
        return self.auto_stop_after_pause

    def get_auto_stop_after_time(self) -> int:
        return self.auto_stop_after_time

    def get_auto_start(self) -> bool:
        return self.auto_start


class FakeOverrides:
    def __init__(self, entries: Optional[dict[str, CallerOverrides]] = None) -> None:
        self.entries = entries or {}

    def lookup(self, caller: str) -> CallerOverrides:
        return self.entries.get(caller, CallerOverrides())


class FakeHandle:
    def __init__(self, target: str = "com.example.maps", cancelled: bool = False) -> None:
        self._target = target
        self.cancelled = cancelled
        self.sent: list[tuple[int, dict[str, Any]]] = []

    @property
    def target(self) -> str:
        return self._target

    def send(self, request_code: int, payload: dict[str, Any]) -> None:
        if self.cancelled:
            raise HandleCanceledError("target is gone")
        self.sent.append((request_code, payload))


class Harness:
    def __init__(
        self,
        preferences: Optional[FakePreferences] = None,
        overrides: Optional[FakeOverrides] = None,
        deferred: bool = False,
    ) -> None:
        self.service = FakeCaptureService()
        self.clock = FakeClock()
        self.loop = TimerLoop(clock=self.clock)
        self.bus = MessageBus()
        self.preferences = preferences or FakePreferences()
        self.transitions: list[tuple[SessionState, SessionState]] = []
        self.outcomes: list[SessionOutcome] = []
        self.bytes: list[str] = []
        self.chunks: list[str] = []
        self.spawned: list[Callable[[], None]] = []
        spawn = self.spawned.append if deferred else (lambda fn: fn())
        self.controller = SessionController(
            service=self.service,
            scheduler=self.loop,
            bus=self.bus,
            preferences=self.preferences,
            overrides=overrides,
            clock=self.clock,
            spawn=spawn,
            on_state_change=lambda f, t: self.transitions.append((f, t)),
            on_finish=self.outcomes.append,
            on_bytes=self.bytes.append,
            on_chunks=self.chunks.append,
        )
        self.controller.connect()

    def messages(self) -> list[Any]:
        out: list[Any] = []
        self.bus.subscribe(ShowNotification, lambda text: out.append(ShowNotification(text)))
        self.bus.subscribe(AppendProgressText, lambda text: out.append(AppendProgressText(text)))
        self.bus.subscribe(ShowFatalError, lambda text: out.append(ShowFatalError(text)))
        self.bus.dispatch_pending()
        return out

    def errors(self) -> list[str]:
        return [o.error.code for o in self.outcomes if o.error is not None]


def test_happy_path_walks_every_state_once() -> None:
    h = Harness()
    h.controller.initialize(RecognizerRequest(caller="com.example.notes"))

    assert h.controller.start() is True
    assert h.controller.state == SessionState.RECORDING
    assert h.controller.stop() is True

    assert h.transitions == [
        (SessionState.INITIALIZED, SessionState.RECORDING),
        (SessionState.RECORDING, SessionState.PROCESSING),
        (SessionState.PROCESSING, SessionState.FINISHED),
    ]
    assert h.service.started == 1
    assert h.service.stopped == 1
    assert len(h.service.transcribed) == 1
    assert h.outcomes == [SessionOutcome(success=True, matches=["hello world"])]
    assert h.controller.session is not None
    assert h.controller.session.outcome == h.outcomes[0]


def test_start_passes_resolved_config_to_capture_service() -> None:
    h = Harness()
    h.controller.initialize(RecognizerRequest(caller="com.example.notes", max_results=5))
    h.controller.start()

    assert h.service.init_args is not None
    sample_rate, user_agent, server_url, grammar_url, target_lang, nbest = h.service.init_args
    assert sample_rate == 16000
    assert "client-1" in user_agent
    assert user_agent.endswith("; com.example.notes")
    assert server_url == "https://asr.example.com/api"
    assert grammar_url == ""
    assert target_lang == ""
    assert nbest == 5


def test_nbest_is_at_least_one() -> None:
    h = Harness()
    h.controller.initialize(RecognizerRequest(max_results=0))
    h.controller.start()

    assert h.service.init_args is not None
    assert h.service.init_args[-1] == 1


def test_start_requires_initialized_session() -> None:
    h = Harness()
    assert h.controller.start() is False

    h.controller.initialize()
    assert h.controller.start() is True
    assert h.controller.start() is False  # already recording
    assert h.service.started == 1


def test_stop_outside_recording_is_ignored() -> None:
    h = Harness()
    assert h.controller.stop() is False
    h.controller.initialize()
    assert h.controller.stop() is False
    assert h.service.stopped == 0


def test_double_stop_yields_one_transcription() -> None:
    h = Harness(deferred=True)
    h.controller.initialize()
    h.controller.start()

    assert h.controller.stop() is True
    assert h.controller.stop() is False

    assert h.controller.state == SessionState.PROCESSING
    assert len(h.spawned) == 1
    h.spawned[0]()
    assert len(h.service.transcribed) == 1
    assert h.controller.state == SessionState.FINISHED


def test_concurrent_stop_takes_effect_once() -> None:
    h = Harness(deferred=True)
    h.controller.initialize()
    h.controller.start()

    results: list[bool] = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        results.append(h.controller.stop())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=2)

    assert results.count(True) == 1
    assert len(h.spawned) == 1
    assert h.service.stopped == 1


def test_malformed_server_url_fails_before_recording() -> None:
    h = Harness()
    session = h.controller.initialize(RecognizerRequest(server_url="not a url"))

    assert session.state == SessionState.FINISHED
    assert h.errors() == [ErrorKind.CLIENT_ERROR]
    assert h.controller.start() is False
    assert h.service.started == 0
    assert (SessionState.INITIALIZED, SessionState.RECORDING) not in h.transitions
    assert [m for m in h.messages() if isinstance(m, ShowFatalError)] == [
        ShowFatalError(h.outcomes[0].error.message)
    ]


def test_malformed_grammar_url_is_a_client_error() -> None:
    h = Harness()
    session = h.controller.initialize(RecognizerRequest(grammar_url="grammar.jsgf"))

    assert session.state == SessionState.FINISHED
    assert h.errors() == [ErrorKind.CLIENT_ERROR]


def test_forwarding_handle_of_wrong_type_is_rejected() -> None:
    h = Harness()
    h.controller.initialize(RecognizerRequest(results_handle=object()))

    assert h.errors() == [ErrorKind.CLIENT_ERROR]
    assert h.outcomes[0].error.message == "The results target is not a valid forwarding handle."
    assert h.service.started == 0


def test_url_and_language_resolution_order() -> None:
    overrides = FakeOverrides(
        {"com.example.maps": CallerOverrides(server_url="https://override.example.com", grammar_lang="et")}
    )
    h = Harness(overrides=overrides)

    session = h.controller.initialize(
        RecognizerRequest(
            caller="com.example.maps",
            server_url="https://extra.example.com",
            grammar_url="https://extra.example.com/g.jsgf",
            grammar_target_lang="en",
        )
    )
    assert session.config is not None
    assert session.config.server_url == "https://override.example.com"
    assert session.config.grammar_url == "https://extra.example.com/g.jsgf"
    assert session.config.grammar_target_lang == "et"


def test_server_url_falls_back_to_extras_then_preferences() -> None:
    h = Harness()
    session = h.controller.initialize(RecognizerRequest(server_url="https://extra.example.com"))
    assert session.config is not None
    assert session.config.server_url == "https://extra.example.com"

    h2 = Harness()
    session2 = h2.controller.initialize(RecognizerRequest())
    assert session2.config is not None
    assert session2.config.server_url == "https://asr.example.com/api"


def test_caller_is_forwarding_target_when_handle_given() -> None:
    overrides = FakeOverrides({"com.example.maps": CallerOverrides(server_url="https://maps.example.com")})
    h = Harness(overrides=overrides)

    session = h.controller.initialize(
        RecognizerRequest(caller="ignored", results_handle=FakeHandle("com.example.maps"))
    )
    assert session.config is not None
    assert session.config.caller == "com.example.maps"
    assert session.config.server_url == "https://maps.example.com"


def test_empty_result_is_exactly_one_no_match() -> None:
    h = Harness()
    h.service.matches = []
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()

    assert h.errors() == [ErrorKind.NO_MATCH]
    assert h.controller.state == SessionState.FINISHED


def test_backend_error_is_classified_and_surfaced() -> None:
    h = Harness()
    h.service.error = (RESULT_NETWORK_ERROR, ConnectionError("down"))
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()

    assert h.errors() == [ErrorKind.NETWORK_ERROR]
    fatal = [m for m in h.messages() if isinstance(m, ShowFatalError)]
    assert fatal == [ShowFatalError("Cannot reach the recognition server.")]


def test_unknown_backend_code_still_terminates() -> None:
    h = Harness()
    h.service.error = (99, None)
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()

    assert h.errors() == [ErrorKind.UNKNOWN_ERROR]
    assert h.outcomes[0].error.message


def test_transcribe_exception_reports_unknown_error() -> None:
    h = Harness()
    h.service.transcribe_error = RuntimeError("boom")
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()

    assert h.errors() == [ErrorKind.UNKNOWN_ERROR]
    assert h.controller.state == SessionState.FINISHED


def test_capture_start_failure_never_enters_recording() -> None:
    h = Harness()
    h.service.start_error = RuntimeError("no microphone")
    h.controller.initialize()

    assert h.controller.start() is False
    assert h.errors() == [ErrorKind.AUDIO_ERROR]
    assert h.transitions == [(SessionState.INITIALIZED, SessionState.FINISHED)]
    assert h.loop.active() == 0


def test_late_callbacks_are_discarded() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()
    assert len(h.outcomes) == 1

    assert h.controller.handle_result(["again"]) is False
    assert h.controller.handle_error(map_error(RESULT_NETWORK_ERROR)) is False
    assert len(h.outcomes) == 1


def test_callback_while_recording_is_discarded() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.start()

    assert h.controller.handle_result(["early"]) is False
    assert h.controller.state == SessionState.RECORDING


def test_watchdog_stops_long_recording() -> None:
    h = Harness(preferences=FakePreferences(auto_stop_after_time=2, auto_stop_after_pause=False), deferred=True)
    h.controller.initialize()
    h.controller.start()

    advance(h.loop, h.clock, 2000)
    assert h.controller.state == SessionState.RECORDING
    advance(h.loop, h.clock, 1000)
    assert h.controller.state == SessionState.PROCESSING
    assert h.service.stopped == 1


def test_pause_auto_stop() -> None:
    h = Harness(deferred=True)
    h.controller.initialize()
    h.controller.start()
    h.service.pausing = True

    advance(h.loop, h.clock, 999)
    assert h.controller.state == SessionState.RECORDING
    advance(h.loop, h.clock, 1)
    assert h.controller.state == SessionState.PROCESSING


def test_pause_ignored_when_policy_disabled() -> None:
    h = Harness(preferences=FakePreferences(auto_stop_after_pause=False), deferred=True)
    h.controller.initialize()
    h.controller.start()
    h.service.pausing = True

    advance(h.loop, h.clock, 5000)
    assert h.controller.state == SessionState.RECORDING


def test_all_timers_cancelled_when_recording_ends() -> None:
    h = Harness(deferred=True)
    h.controller.initialize()
    h.controller.start()
    assert h.loop.active() == 4

    h.controller.stop()
    assert h.loop.active() == 0
    advance(h.loop, h.clock, 10_000)
    assert h.bytes == []
    assert h.chunks == []


def test_monitors_publish_progress() -> None:
    h = Harness(preferences=FakePreferences(auto_stop_after_pause=False))
    h.controller.initialize()
    h.controller.start()
    h.service.length = 2048
    h.service.chunks = 3

    advance(h.loop, h.clock, 1500)

    assert h.bytes == ["2.0 KB", "2.0 KB"]
    assert h.chunks == ["..."]


def test_transcription_posts_progress_text() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.start()
    h.controller.stop()

    progress = [m for m in h.messages() if isinstance(m, AppendProgressText)]
    assert progress == [AppendProgressText(" 1.6 KB")]


def test_results_are_truncated_to_max_results() -> None:
    h = Harness()
    h.service.matches = ["a", "b", "c"]
    h.controller.initialize(RecognizerRequest(max_results=2))
    h.controller.start()
    h.controller.stop()

    assert h.outcomes[0].matches == ["a", "b"]


def test_forwarded_results_reach_the_handle() -> None:
    h = Harness()
    handle = FakeHandle()
    h.service.matches = ["one", "two"]
    h.controller.initialize(RecognizerRequest(results_handle=handle, results_payload={"k": "v"}))
    h.controller.start()
    h.controller.stop()

    assert handle.sent == [(FORWARD_REQUEST_CODE, {"k": "v", "query": "one", "results": ["one", "two"]})]
    assert h.outcomes[0].success is True
    assert ShowNotification("Forwarded: [one, two]") in h.messages()


def test_forwarding_failure_is_a_notification() -> None:
    h = Harness()
    handle = FakeHandle(cancelled=True)
    h.controller.initialize(RecognizerRequest(results_handle=handle))
    h.controller.start()
    h.controller.stop()

    assert h.controller.state == SessionState.FINISHED
    assert h.outcomes[0].success is True
    notes = [m for m in h.messages() if isinstance(m, ShowNotification)]
    assert notes == [ShowNotification("Forwarded: hello world"), ShowNotification("target is gone")]


def test_crashing_handle_still_concludes_session() -> None:
    class CrashingHandle(FakeHandle):
        def send(self, request_code: int, payload: dict[str, Any]) -> None:
            raise RuntimeError("receiver crashed")

    h = Harness()
    session = h.controller.initialize(RecognizerRequest(results_handle=CrashingHandle()))
    h.controller.start()
    h.controller.stop()

    assert h.controller.state == SessionState.FINISHED
    assert session.outcome is not None
    assert session.outcome.success is True
    assert len(h.outcomes) == 1
    assert ShowNotification("receiver crashed") in h.messages()
    assert h.errors() == []


def test_retry_after_finish_creates_new_session() -> None:
    h = Harness()
    h.service.matches = []
    first = h.controller.initialize()
    h.controller.start()
    h.controller.stop()
    assert first.finished

    h.service.matches = ["second try"]
    second = h.controller.initialize()
    assert second is not first
    assert second.number == first.number + 1
    h.controller.start()
    h.controller.stop()
    assert h.outcomes[-1].matches == ["second try"]


def test_initialize_while_active_keeps_current_session() -> None:
    h = Harness()
    first = h.controller.initialize()
    h.controller.start()

    assert h.controller.initialize() is first


def test_connect_auto_starts_when_enabled() -> None:
    service_prefs = FakePreferences(auto_start=True)
    h = Harness(preferences=service_prefs)
    h.controller.disconnect()
    h.controller.initialize()

    h.controller.connect()

    assert h.controller.state == SessionState.RECORDING


def test_disconnect_cancels_timers() -> None:
    h = Harness()
    h.controller.initialize()
    h.controller.start()

    h.controller.disconnect()

    assert h.loop.active() == 0
    assert h.service.on_result is None


def test_describe_lists_session_details() -> None:
    h = Harness()
    h.controller.initialize(RecognizerRequest(caller="com.example.notes", prompt="Say it", language="et-EE"))

    details = h.controller.describe()

    assert "ID: client-1" in details
    assert "PROMPT: Say it" in details
    assert "LANGUAGE: et-EE" in details
    assert "Selected server: https://asr.example.com/api" in details
