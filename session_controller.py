"""State-machine based session orchestration."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional
from urllib.parse import urlsplit

from errors import (
    RESULT_AUDIO_ERROR,
    RESULT_CLIENT_ERROR,
    RESULT_NO_MATCH,
    ConfigurationError,
    ErrorKind,
    map_error,
)
from interfaces import (
    CancelToken,
    CaptureService,
    ForwardingHandle,
    OverrideRegistry,
    PreferenceStore,
    Scheduler,
)
from message_bus import MessageBus
from models import (
    AppendProgressText,
    CaptureState,
    ErrorEvent,
    RecognizerRequest,
    RequestConfig,
    Session,
    SessionOutcome,
    SessionState,
    ShowFatalError,
)
from monitors import StatusMonitors, format_size
from result_channel import ResultChannel
from scheduler import monotonic_ms

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

WATCHDOG_INTERVAL_MS = 1000

StateCallback = Callable[[SessionState, SessionState], None]
FinishCallback = Callable[[SessionOutcome], None]
TextCallback = Callable[[str], None]
Spawn = Callable[[Callable[[], None]], None]


def choose_value(*values: Optional[str]) -> str:
    """First non-empty value, or an empty string."""
    for value in values:
        if value:
            return value
    return ""


def check_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ConfigurationError(f"malformed URL: {url!r}")
    return url


def spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


class SessionController:
    def __init__(
        self,
        service: CaptureService,
        scheduler: Scheduler,
        bus: MessageBus,
        preferences: PreferenceStore,
        overrides: Optional[OverrideRegistry] = None,
        clock: Callable[[], float] = monotonic_ms,
        spawn: Spawn = spawn_thread,
        on_state_change: Optional[StateCallback] = None,
        on_finish: Optional[FinishCallback] = None,
        on_bytes: Optional[TextCallback] = None,
        on_chunks: Optional[TextCallback] = None,
    ) -> None:
        self._service = service
        self._scheduler = scheduler
        self._bus = bus
        self._preferences = preferences
        self._overrides = overrides
        self._clock = clock
        self._spawn = spawn
        self._on_state_change = on_state_change
        self._on_finish = on_finish
        self._on_bytes = on_bytes
        self._on_chunks = on_chunks

        self._lock = threading.RLock()
        self._results = ResultChannel(bus)
        self._client_id = preferences.get_client_id()
        self._session: Optional[Session] = None
        self._session_count = 0
        self._request = RecognizerRequest()
        self._monitors: Optional[StatusMonitors] = None
        self._watchdog: Optional[CancelToken] = None
        self._connected = False

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def state(self) -> Optional[SessionState]:
        return self._session.state if self._session else None

    @property
    def client_id(self) -> str:
        return self._client_id

    # ------------------------------------------------------------------
    # Collaborator lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        if self._connected:
            return
        self._service.connect(self._on_backend_result, self._on_backend_error)
        self._connected = True
        logger.info("Capture service connected")
        if (
            self._service.current_state() == CaptureState.IDLE
            and self._preferences.get_auto_start()
            and self.state == SessionState.INITIALIZED
        ):
            self.start()

    def disconnect(self) -> None:
        """Tear down timers and release the collaborator."""
        with self._lock:
            self._cancel_timers()
        if self._connected:
            self._service.disconnect()
            self._connected = False
            logger.info("Capture service disconnected")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def initialize(self, request: Optional[RecognizerRequest] = None) -> Session:
        """Create a fresh session from ``request``, preferences and overrides.

        A configuration problem concludes the new session at once with a
        ``CLIENT_ERROR`` event; recording is never entered.
        """
        with self._lock:
            if self._session is not None and not self._session.finished:
                logger.warning("Session %d still active, ignoring initialize", self._session.number)
                return self._session
            self._session_count += 1
            self._request = request or RecognizerRequest()
            session = Session(number=self._session_count, client_id=self._client_id)
            self._session = session
            try:
                session.config = self._resolve_config(self._request)
            except ConfigurationError as exc:
                event = map_error(RESULT_CLIENT_ERROR, "config", exc, exc.message_key)
                self._conclude_error(session, event)
                return session
            logger.info("Session %d initialized for %s", session.number, session.config.caller or "-")
            return session

    def start(self) -> bool:
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.INITIALIZED or session.config is None:
                return False
            config = session.config
            try:
                self._service.init(
                    config.sample_rate,
                    config.user_agent,
                    config.server_url,
                    config.grammar_url,
                    config.grammar_target_lang,
                    config.nbest,
                )
                self._service.start()
            except Exception as exc:
                self._conclude_error(session, map_error(RESULT_AUDIO_ERROR, "start", exc))
                return False
            session.start_time = self._clock()
            self._transition(session, SessionState.RECORDING)
            self._monitors = StatusMonitors(
                self._scheduler,
                self._service,
                request_stop=self.stop,
                auto_stop_after_pause=config.auto_stop_after_pause,
                on_bytes=self._on_bytes,
                on_chunks=self._on_chunks,
            )
            self._monitors.start()
            self._watchdog = self._scheduler.schedule(
                self._check_elapsed, WATCHDOG_INTERVAL_MS, WATCHDOG_INTERVAL_MS
            )
            return True

    def stop(self) -> bool:
        """Finish recording and hand the audio to a background transcription.

        Only the first call for a recording session has any effect.
        """
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.RECORDING:
                return False
            self._transition(session, SessionState.PROCESSING)
            self._cancel_timers()
            try:
                self._service.stop()
                raw = self._service.recording()
            except Exception as exc:
                self._conclude_error(session, map_error(RESULT_AUDIO_ERROR, "stop", exc))
                return True
        self._spawn(lambda: self._transcribe(session, raw))
        return True

    def handle_result(self, matches: Optional[list[str]], session: Optional[Session] = None) -> bool:
        """Conclude the session with ``matches``; an empty list is a NO_MATCH error."""
        if not matches:
            return self.handle_error(map_error(RESULT_NO_MATCH, "result"), session)
        with self._lock:
            session = self._claim(session)
            if session is None or session.config is None:
                return False
            config = session.config
        outcome = self._results.deliver(list(matches), config)
        self._finish(session, outcome)
        return True

    def handle_error(self, event: ErrorEvent, session: Optional[Session] = None) -> bool:
        with self._lock:
            session = self._claim(session)
            if session is None:
                return False
        self._surface_error(session, event)
        return True

    # ------------------------------------------------------------------
    # Developer details
    # ------------------------------------------------------------------

    def describe(self) -> list[str]:
        session = self._session
        config = session.config if session else None
        request = self._request
        payload = config.results_payload if config else None
        handle = config.results_handle if config else None
        return [
            f"ID: {self._client_id}",
            f"User-Agent comment: {config.user_agent if config else None}",
            f"Caller: {config.caller if config else None}",
            f"Forwarding target: {getattr(handle, 'target', None)}",
            f"Selected grammar: {config.grammar_url if config else None}",
            f"Selected target lang: {config.grammar_target_lang if config else None}",
            f"Selected server: {config.server_url if config else None}",
            f"State: {session.state.value if session else None}",
            f"LANGUAGE_MODEL: {request.language_model}",
            f"LANGUAGE: {request.language}",
            f"MAX_RESULTS: {request.max_results}",
            f"PROMPT: {request.prompt}",
            f"RESULTS_PAYLOAD: {sorted(payload) if payload else None}",
            f"SERVER_URL: {request.server_url}",
            f"GRAMMAR_URL: {request.grammar_url}",
            f"GRAMMAR_TARGET_LANG: {request.grammar_target_lang}",
        ]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve_config(self, request: RecognizerRequest) -> RequestConfig:
        handle = request.results_handle
        if handle is not None and not isinstance(handle, ForwardingHandle):
            raise ConfigurationError(
                f"unsupported forwarding handle: {type(handle).__name__}",
                message_key="errorBadForwardingHandle",
            )
        caller = handle.target if handle is not None else request.caller
        overrides = self._overrides.lookup(caller) if self._overrides and caller else None

        server_url = check_url(
            choose_value(
                overrides.server_url if overrides else "",
                request.server_url,
                self._preferences.get_server_url(),
            )
        )
        grammar_url = choose_value(overrides.grammar_url if overrides else "", request.grammar_url)
        if grammar_url:
            check_url(grammar_url)
        target_lang = choose_value(
            overrides.grammar_lang if overrides else "", request.grammar_target_lang
        )
        return RequestConfig(
            server_url=server_url,
            grammar_url=grammar_url,
            grammar_target_lang=target_lang,
            max_results=max(request.max_results, 0),
            results_handle=handle,
            results_payload=dict(request.results_payload) if request.results_payload else None,
            prompt=request.prompt,
            caller=caller,
            user_agent=f"SpeechSession/{__version__}; {self._client_id}; {caller or None}",
            sample_rate=self._preferences.get_sample_rate(),
            max_recording_ms=1000 * self._preferences.get_auto_stop_after_time(),
            auto_stop_after_pause=self._preferences.get_auto_stop_after_pause(),
        )

    def _check_elapsed(self) -> None:
        session = self._session
        if session is None or session.state != SessionState.RECORDING or session.config is None:
            return
        if self._clock() - session.start_time > session.config.max_recording_ms:
            logger.info("Session %d reached the recording time limit", session.number)
            self.stop()

    def _transcribe(self, session: Session, raw: bytes) -> None:
        self._bus.post(AppendProgressText(f" {format_size(len(raw))}"))
        try:
            self._service.transcribe(raw)
        except Exception as exc:
            logger.exception("Transcription of session %d failed", session.number)
            self.handle_error(map_error(ErrorKind.UNKNOWN_ERROR, "transcribe", exc), session)

    def _on_backend_result(self, matches: Optional[list[str]]) -> None:
        self.handle_result(matches)

    def _on_backend_error(self, code: int, cause: Optional[BaseException]) -> None:
        self.handle_error(map_error(code, "onError", cause))

    def _claim(self, expected: Optional[Session]) -> Optional[Session]:
        """Move the processing session to FINISHED; None if it was not ours to finish."""
        session = self._session
        if session is None or (expected is not None and expected is not session):
            logger.warning("Discarding callback for a replaced session")
            return None
        if session.state != SessionState.PROCESSING or session.config is None:
            logger.warning(
                "Discarding callback for session %d in state %s",
                session.number,
                session.state.value,
            )
            return None
        self._transition(session, SessionState.FINISHED)
        return session

    def _conclude_error(self, session: Session, event: ErrorEvent) -> None:
        self._cancel_timers()
        self._transition(session, SessionState.FINISHED)
        self._surface_error(session, event)

    def _surface_error(self, session: Session, event: ErrorEvent) -> None:
        self._bus.post(ShowFatalError(event.message))
        self._finish(session, SessionOutcome(success=False, error=event))

    def _finish(self, session: Session, outcome: SessionOutcome) -> None:
        session.outcome = outcome
        if outcome.success:
            logger.info("Session %d delivered %d match(es)", session.number, len(outcome.matches))
        elif outcome.error is not None:
            logger.info("Session %d failed: %s", session.number, outcome.error.code)
        if self._on_finish:
            self._on_finish(outcome)

    def _cancel_timers(self) -> None:
        if self._monitors is not None:
            self._monitors.cancel()
            self._monitors = None
        if self._watchdog is not None:
            self._scheduler.cancel(self._watchdog)
            self._watchdog = None

    def _transition(self, session: Session, to_state: SessionState) -> None:
        from_state = session.state
        if from_state == to_state:
            return
        session.state = to_state
        logger.info("Session %d: %s -> %s", session.number, from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
