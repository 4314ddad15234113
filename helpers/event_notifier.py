"""
Grid lifecycle event notifier.

Stamps every grid event with module metadata, records it as JSONL for
post-trade analysis, and publishes it on the shared event bus.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from helpers.event_bus import EventBus


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(val) for key, val in value.items()}
    return value


class GridEventNotifier:
    """
    Dispatcher for grid events.

    Responsibilities:
    - Publish ``grid.*`` events on the event bus with ``timestamp``/``module_id``
    - Append each event to a JSONL history file when ``history_path`` is set
    """

    def __init__(
        self,
        event_bus: Optional[EventBus],
        module_id: str,
        *,
        history_path: Optional[Path] = None,
        logger=None,
    ) -> None:
        self.event_bus = event_bus
        self.module_id = module_id
        self.history_path = history_path
        self.logger = logger

        if self.history_path is not None:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Publish ``event_type`` and return the enriched payload."""
        event = _jsonable(payload)
        event["timestamp"] = time.time()
        event["module_id"] = self.module_id

        if self.history_path is not None:
            self._write_history(event_type, event)

        if self.event_bus is not None:
            self.event_bus.emit(event_type, event)
        return event

    def _write_history(self, event_type: str, event: Dict[str, Any]) -> None:
        record = {
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "payload": event,
        }
        try:
            with self.history_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False))
                handle.write("\n")
        except OSError as exc:
            if self.logger is not None:
                self.logger.warning(f"Failed to record grid event {event_type}: {exc}")
