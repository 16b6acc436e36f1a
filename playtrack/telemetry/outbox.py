"""
Durable outbox of events whose batch failed to send.

Stored under one store key as a JSON array of serialized events. The
array is capped; when it overflows the oldest entries are evicted first.
"""

from __future__ import annotations

from playtrack.common.logger import get_logger
from playtrack.common.storage import KeyValueStore, StoreKeys
from playtrack.common.utils import json_dumps, json_loads
from playtrack.telemetry.events import Event

logger = get_logger(__name__)


class PendingOutbox:
    """Capped FIFO of serialized events backed by a key/value store."""

    def __init__(self, store: KeyValueStore, max_events: int = 500):
        self.store = store
        self.max_events = max_events

    def _read_raw(self) -> list[str]:
        raw = self.store.get(StoreKeys.PENDING_EVENTS)
        if not raw:
            return []
        try:
            entries = json_loads(raw)
        except ValueError as e:
            logger.warning("Discarding unreadable outbox", error=str(e))
            return []
        if not isinstance(entries, list):
            return []
        return [e for e in entries if isinstance(e, str)]

    def _write_raw(self, entries: list[str]) -> bool:
        if len(entries) > self.max_events:
            entries = entries[len(entries) - self.max_events :]
        return self.store.set(StoreKeys.PENDING_EVENTS, json_dumps(entries))

    def append(self, events: list[Event]) -> bool:
        """Append a failed batch, evicting the oldest entries past the cap."""
        if not events:
            return True
        combined = self._read_raw() + [json_dumps(e.to_dict()) for e in events]
        saved = self._write_raw(combined)
        if saved:
            logger.info(
                "Saved events to offline queue",
                events=len(events),
                total=min(len(combined), self.max_events),
            )
        else:
            logger.warning("Failed to save events to offline queue", events=len(events))
        return saved

    def replace(self, events: list[Event]) -> bool:
        """Overwrite the outbox with exactly these events."""
        if not events:
            return self.clear()
        return self._write_raw([json_dumps(e.to_dict()) for e in events])

    def load(self) -> list[Event]:
        """Parse stored events, skipping malformed entries."""
        events: list[Event] = []
        for entry in self._read_raw():
            try:
                event = Event.from_dict(json_loads(entry))
            except ValueError:
                event = None
            if event is not None:
                events.append(event)
        return events

    def clear(self) -> bool:
        return self.store.remove(StoreKeys.PENDING_EVENTS)

    def __len__(self) -> int:
        return len(self._read_raw())
