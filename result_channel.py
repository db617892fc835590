"""Delivery of a finished hypothesis list to its destination."""

from __future__ import annotations

import logging
from typing import Any

from errors import HandleCanceledError
from message_bus import MessageBus
from models import RequestConfig, SessionOutcome, ShowNotification

logger = logging.getLogger(__name__)

# Correlation token passed along with forwarded results; it carries no meaning.
FORWARD_REQUEST_CODE = 1234

QUERY_KEY = "query"
RESULTS_KEY = "results"
FORWARDED_TEMPLATE = "Forwarded: {}"


def truncate(matches: list[str], max_results: int) -> list[str]:
    if max_results > 0 and len(matches) > max_results:
        return matches[:max_results]
    return list(matches)


def summarize(matches: list[str]) -> str:
    if len(matches) == 1:
        return matches[0]
    return "[" + ", ".join(matches) + "]"


class ResultChannel:
    def __init__(self, bus: MessageBus) -> None:
        self._bus = bus

    def deliver(self, matches: list[str], config: RequestConfig) -> SessionOutcome:
        """Return ``matches`` directly or forward them through the caller's handle.

        ``matches`` must not be empty. The outcome is always a success: a
        forwarding handle that turns out to be invalid, or that raises, only
        produces a notification.
        """
        matches = truncate(matches, config.max_results)
        handle = config.results_handle
        if handle is None:
            return SessionOutcome(success=True, matches=matches)

        payload: dict[str, Any] = dict(config.results_payload or {})
        payload[QUERY_KEY] = matches[0]
        payload[RESULTS_KEY] = list(matches)
        self._bus.post(ShowNotification(FORWARDED_TEMPLATE.format(summarize(matches))))
        try:
            handle.send(FORWARD_REQUEST_CODE, payload)
        except HandleCanceledError as exc:
            logger.warning("Forwarding to %s failed: %s", getattr(handle, "target", "?"), exc)
            self._bus.post(ShowNotification(str(exc)))
        except Exception as exc:
            logger.exception("Forwarding handle %s raised", getattr(handle, "target", "?"))
            self._bus.post(ShowNotification(str(exc) or type(exc).__name__))
        return SessionOutcome(success=True, matches=matches)
