from __future__ import annotations

import logging
import threading
import time
from typing import Any

from autoqac.models import ItemStatus
from autoqac.state.events import PluginProcessed, StateChangeEvent, SubscriberLagged

logger = logging.getLogger(__name__)


class RunMetrics:
    """Counters for one cleaning session.

    Fed from two sides: state events read off a subscriber stream, and the
    process runner's ``event_hook`` telemetry, which arrives on the worker
    thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started = time.monotonic()
        self.plugins_cleaned = 0
        self.plugins_failed = 0
        self.plugins_skipped = 0
        self.total_cleaning_seconds = 0.0
        self.state_events = 0
        self.events_dropped = 0
        self.process_events: dict[str, int] = {}
        self.process_seconds = 0.0

    def record_event(self, event: StateChangeEvent | SubscriberLagged) -> None:
        with self._lock:
            if isinstance(event, SubscriberLagged):
                self.events_dropped += event.missed
                return
            self.state_events += 1
            if not isinstance(event, PluginProcessed):
                return
            if event.status is ItemStatus.CLEANED:
                self.plugins_cleaned += 1
                self.total_cleaning_seconds += event.duration_seconds or 0.0
            elif event.status is ItemStatus.FAILED:
                self.plugins_failed += 1
            elif event.status is ItemStatus.SKIPPED:
                self.plugins_skipped += 1

    def record_process_event(self, event: dict[str, Any]) -> None:
        name = str(event.get("event") or "unknown")
        with self._lock:
            self.process_events[name] = self.process_events.get(name, 0) + 1
            if name == "xedit_process_exit":
                self.process_seconds += float(event.get("elapsed") or 0.0)
        if name == "xedit_process_kill_timeout":
            logger.warning("xEdit process %s survived being killed", event.get("pid"))

    def process_count(self, name: str) -> int:
        return self.process_events.get(f"xedit_process_{name}", 0)

    @property
    def average_cleaning_seconds(self) -> float:
        if not self.plugins_cleaned:
            return 0.0
        return self.total_cleaning_seconds / self.plugins_cleaned

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "plugins_cleaned": self.plugins_cleaned,
                "plugins_failed": self.plugins_failed,
                "plugins_skipped": self.plugins_skipped,
                "total_cleaning_seconds": round(self.total_cleaning_seconds, 3),
                "average_cleaning_seconds": round(self.average_cleaning_seconds, 3),
                "state_events": self.state_events,
                "events_dropped": self.events_dropped,
                "process_events": dict(self.process_events),
                "process_seconds": round(self.process_seconds, 3),
            }
