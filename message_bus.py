"""Ordered channel from background work to the coordinating context."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Callable, Optional

from models import AppendProgressText, BusMessage, ShowFatalError, ShowNotification

logger = logging.getLogger(__name__)

MESSAGE_TYPES = (ShowNotification, AppendProgressText, ShowFatalError)


class MessageBus:
    """Bounded FIFO with a single consumer.

    Any thread may ``post``; other threads block while the queue is full,
    the consumer thread drains it first. Only the thread that first calls
    ``dispatch_pending`` may consume; handlers therefore always run in the
    coordinating context.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: Queue[BusMessage] = Queue(maxsize=maxsize)
        self._handlers: dict[type, Callable[[str], None]] = {}
        self._consumer: Optional[int] = None
        self._lock = threading.Lock()

    def subscribe(self, message_type: type, handler: Callable[[str], None]) -> None:
        if message_type not in MESSAGE_TYPES:
            raise TypeError(f"unsupported message type: {message_type!r}")
        self._handlers[message_type] = handler

    def post(self, message: BusMessage) -> None:
        if not isinstance(message, MESSAGE_TYPES):
            raise TypeError(f"unsupported message: {message!r}")
        if self._consumer == threading.get_ident():
            # The consumer drains its own backlog instead of waiting on itself.
            if self._queue.full():
                self.dispatch_pending()
            self._queue.put_nowait(message)
            return
        # Blocks while the consumer is behind.
        self._queue.put(message)

    def pending(self) -> int:
        return self._queue.qsize()

    def dispatch_pending(self) -> int:
        """Deliver every queued message in order. Returns how many ran."""
        self._claim_consumer()
        handled = 0
        while True:
            try:
                message = self._queue.get_nowait()
            except Empty:
                return handled
            handler = self._handlers.get(type(message))
            if handler is None:
                logger.debug("No handler for %s, dropping %r", type(message).__name__, message.text)
            else:
                handler(message.text)
            handled += 1

    def _claim_consumer(self) -> None:
        ident = threading.get_ident()
        with self._lock:
            if self._consumer is None:
                self._consumer = ident
            elif self._consumer != ident:
                raise RuntimeError("MessageBus is consumed from a second thread")
