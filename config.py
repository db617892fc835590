"""JSON-backed preferences and per-caller override registry."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

from models import CallerOverrides

DEFAULT_SERVER_URL = "https://dashscope.aliyuncs.com/api/v1"
DEFAULT_SAMPLE_RATE = 16000
DEFAULT_AUTO_STOP_AFTER_TIME_S = 10
DEFAULT_HOTKEY = "Key.alt_l"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "speech_session" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_client_id(self) -> str:
        data = self._read_all()
        client_id = str(data.get("client_id", ""))
        if not client_id:
            client_id = str(uuid.uuid4())
            data["client_id"] = client_id
            self._write_all(data)
        return client_id

    def get_server_url(self) -> str:
        return str(self._read_all().get("server_url") or DEFAULT_SERVER_URL)

    def set_server_url(self, url: str) -> None:
        self._set("server_url", url)

    def get_sample_rate(self) -> int:
        return self._get_int("sample_rate", DEFAULT_SAMPLE_RATE)

    def get_auto_stop_after_pause(self) -> bool:
        return bool(self._read_all().get("auto_stop_after_pause", True))

    def get_auto_stop_after_time(self) -> int:
        """Maximum recording duration in seconds."""
        return self._get_int("auto_stop_after_time", DEFAULT_AUTO_STOP_AFTER_TIME_S)

    def get_auto_start(self) -> bool:
        return bool(self._read_all().get("auto_start", False))

    def get_api_key(self) -> str:
        return str(self._read_all().get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_hotkey(self) -> str:
        return str(self._read_all().get("hotkey", DEFAULT_HOTKEY))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def lookup(self, caller: str) -> CallerOverrides:
        """Return the overrides registered for ``caller`` (empty if none)."""
        callers = self._read_all().get("callers", {})
        entry = callers.get(caller) if isinstance(callers, dict) and caller else None
        if not isinstance(entry, dict):
            return CallerOverrides()
        return CallerOverrides(
            server_url=str(entry.get("server_url", "")),
            grammar_url=str(entry.get("grammar_url", "")),
            grammar_lang=str(entry.get("grammar_lang", "")),
        )

    def set_caller_overrides(self, caller: str, overrides: CallerOverrides) -> None:
        data = self._read_all()
        callers = data.get("callers")
        if not isinstance(callers, dict):
            callers = {}
        callers[caller] = {
            "server_url": overrides.server_url,
            "grammar_url": overrides.grammar_url,
            "grammar_lang": overrides.grammar_lang,
        }
        data["callers"] = callers
        self._write_all(data)

    def _get_int(self, key: str, default: int) -> int:
        try:
            return int(self._read_all().get(key, default))
        except (TypeError, ValueError):
            return default

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
