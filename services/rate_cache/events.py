"""Named-event callback registry shared by the rate cache components."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List

_logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventHooks:
    """Keep listeners per event name and fan payloads out to them.

    A failing listener is logged and never interrupts the emitter nor the
    remaining listeners.
    """

    def __init__(self, names: Iterable[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = {}
        self._allowed = frozenset(names) if names is not None else None

    def register(self, name: str, callback: Listener) -> Callable[[], None]:
        """Attach ``callback`` to ``name`` and return a function that detaches it."""

        if self._allowed is not None and name not in self._allowed:
            raise ValueError(f"Unknown event '{name}'")
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._listeners.setdefault(name, []).append(callback)

        def _unregister() -> None:
            self.unregister(name, callback)

        return _unregister

    def unregister(self, name: str, callback: Listener) -> bool:
        with self._lock:
            listeners = self._listeners.get(name)
            if not listeners or callback not in listeners:
                return False
            listeners.remove(callback)
            return True

    def emit(self, name: str, payload: Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners.get(name, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                _logger.exception("Listener for '%s' failed", name)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._listeners.get(name, ()))


__all__ = ["EventHooks", "Listener"]
