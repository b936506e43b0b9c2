"""Named-event publish/subscribe used to tell the UI that data changed.

Emission is fire-and-forget.  Nothing in the core depends on a listener
existing, and a listener that raises is logged and skipped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], Any]

CATALOGED_EVENTS = frozenset({
    'database:initialized',
    'account:created',
    'account:updated',
    'account:deleted',
    'account:restored',
    'transaction:created',
    'transaction:updated',
    'transaction:deleted',
    'income-source:created',
    'income-source:updated',
    'income-source:deleted',
    'income-source:restored',
    'category:created',
    'category:updated',
    'category:deleted',
    'category:restored',
    'bucket:updated',
    'planned-expense:created',
    'planned-expense:updated',
    'planned-expense:deleted',
    'planned-expense:restored',
    'goal:created',
    'goal:updated',
    'goal:deleted',
    'goal:restored',
    'goal:funded',
    'budget:month-carried-forward',
    'planning:data-loaded',
    'planning:reset',
    'planning:session-changed',
    'planning:scenario-saved',
    'planning:scenario-loaded',
    'planning:scenario-deleted',
})


class EventBus:
    """In-process event bus.

    Listeners are called synchronously, in subscription order, with the
    payload dict.
    """

    def __init__(self, debug: bool = False):
        self._listeners: Dict[str, List[Listener]] = {}
        self._catalog: Set[str] = set(CATALOGED_EVENTS)
        self.debug = debug

    def emit(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if name not in self._catalog:
            logger.warning("Emitting uncataloged event %r", name)
        payload = payload if payload is not None else {}
        if self.debug:
            logger.debug("Emit %s: %r", name, payload)

        for listener in list(self._listeners.get(name, ())):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %r failed", name)

    def on(self, name: str, listener: Listener) -> None:
        if not callable(listener):
            raise TypeError("on() requires a callable listener")
        listeners = self._listeners.setdefault(name, [])
        if listener not in listeners:
            listeners.append(listener)

    def off(self, name: str, listener: Listener) -> None:
        listeners = self._listeners.get(name)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[name]

    def clear(self, name: Optional[str] = None) -> None:
        """Drop the listeners for ``name``, or every listener."""
        if name is None:
            self._listeners.clear()
        else:
            self._listeners.pop(name, None)

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, ()))

    def register_event(self, name: str) -> None:
        self._catalog.add(name)

    def is_registered(self, name: str) -> bool:
        return name in self._catalog


# Process-wide default bus.  Components accept their own for tests.
bus = EventBus()
