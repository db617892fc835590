"""Forwarding handle that pastes the best match into the focused window."""

from __future__ import annotations

import sys
import time
from typing import Any

from errors import HandleCanceledError
from result_channel import QUERY_KEY

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover
    Controller = None  # type: ignore
    Key = None  # type: ignore


class PasteForwardingHandle:
    def __init__(self, target: str = "desktop.paste", restore_delay_s: float = 0.1) -> None:
        self._target = target
        self._restore_delay_s = restore_delay_s

    @property
    def target(self) -> str:
        return self._target

    def send(self, request_code: int, payload: dict[str, Any]) -> None:
        text = str(payload.get(QUERY_KEY, "")).strip()
        if not text:
            raise HandleCanceledError("Nothing to paste")
        if pyperclip is None or Controller is None or Key is None:
            raise HandleCanceledError("clipboard/keyboard dependency missing")

        try:
            old_clip = pyperclip.paste()
            pyperclip.copy(text)
            self._press_paste()
            time.sleep(self._restore_delay_s)
            pyperclip.copy(old_clip)
        except Exception as exc:
            raise HandleCanceledError(f"Paste failed: {exc}") from exc

    def _press_paste(self) -> None:
        modifier = Key.cmd if sys.platform == "darwin" else Key.ctrl
        keyboard = Controller()
        keyboard.press(modifier)
        keyboard.press("v")
        keyboard.release("v")
        keyboard.release(modifier)
