"""Error taxonomy, backend result codes and user-facing messages."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from models import ErrorEvent

logger = logging.getLogger(__name__)

# Result codes reported by the capture/transcription backend.
RESULT_NO_MATCH = 1
RESULT_CLIENT_ERROR = 2
RESULT_SERVER_ERROR = 3
RESULT_NETWORK_ERROR = 4
RESULT_AUDIO_ERROR = 5


class ErrorKind(str, Enum):
    AUDIO_ERROR = "AUDIO_ERROR"
    NO_MATCH = "NO_MATCH"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_KIND_BY_CODE = {
    RESULT_NO_MATCH: ErrorKind.NO_MATCH,
    RESULT_CLIENT_ERROR: ErrorKind.CLIENT_ERROR,
    RESULT_SERVER_ERROR: ErrorKind.SERVER_ERROR,
    RESULT_NETWORK_ERROR: ErrorKind.NETWORK_ERROR,
    RESULT_AUDIO_ERROR: ErrorKind.AUDIO_ERROR,
}

MESSAGE_KEYS = {
    ErrorKind.AUDIO_ERROR: "errorResultAudioError",
    ErrorKind.NO_MATCH: "errorResultNoMatch",
    ErrorKind.NETWORK_ERROR: "errorResultNetworkError",
    ErrorKind.SERVER_ERROR: "errorResultServerError",
    ErrorKind.CLIENT_ERROR: "errorResultClientError",
    ErrorKind.UNKNOWN_ERROR: "error",
}

ERROR_MESSAGES = {
    "errorResultAudioError": "Recording the audio failed.",
    "errorResultNoMatch": "Nothing was recognized, please try again.",
    "errorResultNetworkError": "Cannot reach the recognition server.",
    "errorResultServerError": "The recognition server refused the request.",
    "errorResultClientError": "The recognizer is misconfigured.",
    "errorBadForwardingHandle": "The results target is not a valid forwarding handle.",
    "error": "Something went wrong.",
}


class SessionError(Exception):
    """Base class for errors raised inside a session."""


class ConfigurationError(SessionError):
    """Local configuration cannot be used (malformed URL, bad handle)."""

    def __init__(self, message: str, message_key: str = "errorResultClientError") -> None:
        super().__init__(message)
        self.message_key = message_key


class HandleCanceledError(SessionError):
    """The forwarding handle is no longer able to accept results."""


class BackendError(SessionError):
    """A transcription attempt failed with one of the RESULT_* codes."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


def classify(code: object) -> ErrorKind:
    """Map a backend code (or an ErrorKind) to the canonical taxonomy."""
    if isinstance(code, ErrorKind):
        return code
    if isinstance(code, int) and not isinstance(code, bool):
        kind = _KIND_BY_CODE.get(code)
        if kind is not None:
            return kind
    logger.warning("Unrecognized error code %r", code)
    return ErrorKind.UNKNOWN_ERROR


def message_for(kind: ErrorKind, message_key: Optional[str] = None) -> str:
    key = message_key or MESSAGE_KEYS.get(kind, "error")
    return ERROR_MESSAGES.get(key, ERROR_MESSAGES["error"])


def map_error(
    code: object,
    origin: str = "",
    cause: Optional[BaseException] = None,
    message_key: Optional[str] = None,
) -> ErrorEvent:
    kind = classify(code)
    if cause is not None:
        logger.error("Exception: %s: %s", origin or kind.value, cause)
    return ErrorEvent(code=kind, origin=origin, message=message_for(kind, message_key))
