"""
In-process publish/subscribe hub shared by trading modules.

Handlers receive the payload dict. Plain functions run inline during
``emit``; coroutine handlers are scheduled on the running loop so an emitter
holding a lock never waits on a subscriber. ``drain()`` awaits whatever is
still in flight (used on shutdown and in tests).
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, Dict, List, Optional, Set

from helpers.unified_logger import get_core_logger

EventHandler = Callable[[Dict[str, Any]], Any]


class EventBus:
    """Named-event dispatcher with ``on`` / ``off`` / ``once`` / ``emit``."""

    def __init__(self, logger=None) -> None:
        self.logger = logger or get_core_logger("event_bus")
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_type: str, handler: EventHandler) -> "EventBus":
        """Subscribe ``handler`` to ``event_type``."""
        self._listeners.setdefault(event_type, []).append(handler)
        return self

    def off(self, event_type: str, handler: Optional[EventHandler] = None) -> "EventBus":
        """
        Unsubscribe a handler.

        Without ``handler`` every listener of ``event_type`` is dropped.
        """
        if event_type not in self._listeners:
            return self
        if handler is None:
            del self._listeners[event_type]
            return self

        remaining = [listener for listener in self._listeners[event_type] if listener != handler]
        if remaining:
            self._listeners[event_type] = remaining
        else:
            del self._listeners[event_type]
        return self

    def once(self, event_type: str, handler: EventHandler) -> "EventBus":
        """Subscribe ``handler`` for a single delivery."""

        def _once(payload: Dict[str, Any]) -> Any:
            self.off(event_type, _once)
            return handler(payload)

        return self.on(event_type, _once)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Deliver ``payload`` to every listener of ``event_type``.

        Returns True when at least one listener was registered. A failing
        handler is logged and does not stop delivery to the others.
        """
        event = dict(payload or {})
        event["event_type"] = event_type
        event.setdefault("timestamp", time.time())

        if event_type != "log":
            self.logger.debug(f"Event: {event_type}")

        listeners = list(self._listeners.get(event_type, ()))
        if not listeners:
            return False

        for handler in listeners:
            try:
                result = handler(event)
            except Exception as exc:
                self.logger.error(f"Handler for '{event_type}' failed: {exc}")
                continue

            if inspect.isawaitable(result):
                self._schedule(event_type, result)

        return True

    def _schedule(self, event_type: str, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning(f"No running loop; async handler for '{event_type}' dropped")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)

        def _finished(done: asyncio.Task) -> None:
            self._pending.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                self.logger.error(f"Async handler for '{event_type}' failed: {exc}")

        task.add_done_callback(_finished)

    async def drain(self) -> None:
        """Wait until every scheduled async handler (including chained ones) finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        self._listeners.clear()
