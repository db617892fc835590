"""Microphone capture service backed by sounddevice."""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, Optional

from errors import BackendError
from interfaces import BackendErrorCallback, ResultCallback
from models import CaptureState
from recognizer import DashscopeTranscriber, TranscribeOptions
from scheduler import monotonic_ms

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

MAX_SAMPLE = 32767


def level_dbfs(samples: Any) -> float:
    """RMS level of an int16 block relative to full scale (<= 0)."""
    data = np.asarray(samples, dtype=np.float64)
    if data.size == 0:
        return -math.inf
    rms = float(np.sqrt(np.mean(np.square(data))))
    if rms <= 0.0:
        return -math.inf
    return 20.0 * math.log10(min(rms, MAX_SAMPLE) / MAX_SAMPLE)


class SoundDeviceCaptureService:
    def __init__(
        self,
        transcriber: Optional[DashscopeTranscriber] = None,
        channels: int = 1,
        block_ms: int = 100,
        chunk_ms: int = 1000,
        silence_dbfs: float = -40.0,
        pause_ms: int = 1500,
    ) -> None:
        self.transcriber = transcriber or DashscopeTranscriber()
        self.channels = channels
        self.block_ms = block_ms
        self.chunk_ms = chunk_ms
        self.silence_dbfs = silence_dbfs
        self.pause_ms = pause_ms

        self._options = TranscribeOptions()
        self._state = CaptureState.IDLE
        self._buffer = bytearray()
        self._stream: Any = None
        self._lock = threading.Lock()
        self._start_time = 0.0
        self._heard_voice = False
        self._last_voice_ms = 0.0
        self._on_result: Optional[ResultCallback] = None
        self._on_error: Optional[BackendErrorCallback] = None

    # ------------------------------------------------------------------
    # Callback slots
    # ------------------------------------------------------------------

    def connect(self, on_result: ResultCallback, on_error: BackendErrorCallback) -> None:
        self._on_result = on_result
        self._on_error = on_error

    def disconnect(self) -> None:
        self._on_result = None
        self._on_error = None
        self._close_stream()
        self._state = CaptureState.IDLE

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def init(
        self,
        sample_rate: int,
        user_agent: str,
        server_url: str,
        grammar_url: str,
        target_lang: str,
        nbest: int,
    ) -> None:
        with self._lock:
            self._options = TranscribeOptions(
                sample_rate=sample_rate,
                channels=self.channels,
                user_agent=user_agent,
                server_url=server_url,
                grammar_url=grammar_url,
                target_lang=target_lang,
                nbest=nbest,
            )
            self._buffer = bytearray()
            self._heard_voice = False
            self._state = CaptureState.IDLE

    def start(self) -> None:
        with self._lock:
            if self._state == CaptureState.RECORDING:
                return
            if sd is None or np is None:
                raise RuntimeError("sounddevice is not installed")
            blocksize = int(self._options.sample_rate * (self.block_ms / 1000.0))
            self._stream = sd.InputStream(
                samplerate=self._options.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._stream.start()
            self._start_time = monotonic_ms()
            self._last_voice_ms = self._start_time
            self._state = CaptureState.RECORDING
        logger.info("Recording at %d Hz", self._options.sample_rate)

    def stop(self) -> None:
        with self._lock:
            if self._state != CaptureState.RECORDING:
                return
            self._state = CaptureState.PROCESSING
        self._close_stream()

    def recording(self) -> bytes:
        with self._lock:
            return bytes(self._buffer)

    def current_state(self) -> CaptureState:
        return self._state

    def accumulated_length(self) -> int:
        with self._lock:
            return len(self._buffer)

    def chunk_count(self) -> int:
        bytes_per_chunk = int(self._options.sample_rate * 2 * self.channels * self.chunk_ms / 1000)
        if bytes_per_chunk <= 0:
            return 0
        return self.accumulated_length() // bytes_per_chunk

    def is_pausing(self) -> bool:
        with self._lock:
            if self._state != CaptureState.RECORDING or not self._heard_voice:
                return False
            return monotonic_ms() - self._last_voice_ms >= self.pause_ms

    def start_time(self) -> float:
        return self._start_time

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    def transcribe(self, raw: bytes) -> None:
        """Run the backend and report through exactly one callback slot."""
        self._state = CaptureState.PROCESSING
        try:
            matches = self.transcriber.transcribe(raw, self._options)
        except BackendError as exc:
            self._state = CaptureState.IDLE
            if self._on_error:
                self._on_error(exc.code, exc.__cause__ or exc)
            return
        self._state = CaptureState.IDLE
        if self._on_result:
            self._on_result(matches)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        if self._state != CaptureState.RECORDING or np is None:
            return
        samples = np.asarray(indata, dtype=np.int16)
        loud = level_dbfs(samples) > self.silence_dbfs
        with self._lock:
            self._buffer.extend(samples.tobytes())
            if loud:
                self._heard_voice = True
                self._last_voice_ms = monotonic_ms()

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
