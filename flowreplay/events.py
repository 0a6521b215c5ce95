"""Lifecycle event dispatch for the orchestrator."""

from __future__ import annotations

import logging
from collections import defaultdict
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[..., None]


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Listeners run on the emitting thread, in registration order. A failing
    listener is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> None:
        """Register a listener for an event."""
        with self._lock:
            self._listeners[event].append(callback)

    def off(self, event: str, callback: Listener) -> None:
        """Remove a previously registered listener."""
        with self._lock:
            if callback in self._listeners.get(event, []):
                self._listeners[event].remove(callback)

    def emit(self, event: str, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener for '%s' failed", event)
