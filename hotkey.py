"""Global start/stop hotkey based on pynput."""

from __future__ import annotations

import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

HOLD = "hold"
TOGGLE = "toggle"


class GlobalHotkeyAdapter:
    """Maps one key to start/stop of a recording.

    In ``hold`` mode the key is push-to-talk. In ``toggle`` mode each press
    alternates between start and stop.
    """

    def __init__(self, hotkey_name: str = "Key.alt_l", mode: str = HOLD) -> None:
        if mode not in (HOLD, TOGGLE):
            raise ValueError(f"unknown hotkey mode: {mode}")
        self._hotkey_name = hotkey_name
        self._mode = mode
        self._listener: Optional[object] = None
        self._pressed = False
        self._active = False
        self._lock = threading.Lock()
        self._on_start: Callable[[], None] = lambda: None
        self._on_stop: Callable[[], None] = lambda: None

    def start(self, on_start: Callable[[], None], on_stop: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_start = on_start
        self._on_stop = on_stop
        self._listener = keyboard.Listener(on_press=self.key_down, on_release=self.key_up)
        self._listener.start()

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def reset(self) -> None:
        """Forget an active toggle, e.g. after the recording stopped on its own."""
        with self._lock:
            self._active = False

    def key_down(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if self._pressed:
                return
            self._pressed = True
            starting = not self._active
            if self._mode == HOLD or starting:
                self._active = True
            else:
                self._active = False
        if starting:
            self._on_start()
        else:
            self._on_stop()

    def key_up(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if not self._pressed:
                return
            self._pressed = False
            if self._mode != HOLD or not self._active:
                return
            self._active = False
        self._on_stop()
