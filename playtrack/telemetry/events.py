"""Telemetry event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from playtrack.common.utils import current_iso_timestamp


class EventType(str, Enum):
    """Closed vocabulary of playback events."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    VIDEO_OPEN = "video_open"
    VIEW_START = "view_start"
    VIEW_PROGRESS = "view_progress"
    VIEW_COMPLETE = "view_complete"
    BUFFER_START = "buffer_start"
    BUFFER_END = "buffer_end"
    QUALITY_CHANGE = "quality_change"
    SEEK = "seek"
    PAUSE = "pause"
    RESUME = "resume"
    ERROR = "error"


class QualityChangeReason(str, Enum):
    """Who switched the rendition."""
    USER = "user"
    AUTO = "auto"


class PlayerSource(str, Enum):
    """Surface the player runs in. Admin previews are never tracked."""
    APP = "app"
    WEB = "web"
    ADMIN = "admin"


class PlaybackPurpose(str, Enum):
    STREAM = "stream"
    DOWNLOAD = "download"


# Expected ``data`` keys per event type. Documentation only; payloads are
# not validated beyond the type tag.
EVENT_PAYLOAD_FIELDS: dict[EventType, tuple[str, ...]] = {
    EventType.SESSION_START: ("platform", "pythonVersion", "userAgent"),
    EventType.SESSION_END: ("position", "totalWatched", "completionPct", "bandwidthBytes"),
    EventType.VIDEO_OPEN: ("title", "source"),
    EventType.VIEW_START: ("position",),
    EventType.VIEW_PROGRESS: (
        "position", "duration", "quality", "bandwidth", "playbackSpeed", "totalWatched",
    ),
    EventType.VIEW_COMPLETE: ("duration", "totalWatched", "completionPct"),
    EventType.BUFFER_START: ("position", "quality"),
    EventType.BUFFER_END: ("bufferDuration", "quality"),
    EventType.QUALITY_CHANGE: ("fromQuality", "toQuality", "qualityChangeReason"),
    EventType.SEEK: ("fromPosition", "toPosition", "position"),
    EventType.PAUSE: ("position", "totalWatched"),
    EventType.RESUME: ("position",),
    EventType.ERROR: ("errorMessage", "errorCode", "position"),
}

# Video-progress thresholds (percent of duration) reported once per session
PROGRESS_THRESHOLDS: tuple[int, ...] = (5, 20, 25, 40, 60, 80, 95)


@dataclass(frozen=True, slots=True)
class Event:
    """
    A single playback event.

    Immutable once created; ordering within a session is creation order.
    """
    event_type: EventType
    video_id: str
    timestamp: str  # ISO 8601, UTC
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: EventType | str,
        video_id: str,
        data: dict[str, Any] | None = None,
    ) -> Event:
        """Factory stamping the current UTC time."""
        return cls(
            event_type=EventType(event_type),
            video_id=video_id,
            timestamp=current_iso_timestamp(),
            data=dict(data or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire form."""
        return {
            "eventType": self.event_type.value,
            "videoId": self.video_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Event | None:
        """
        Rebuild an event from its wire form.

        Returns None for entries without an event type or video id, or
        with an unknown event type.
        """
        if not isinstance(raw, dict):
            return None

        event_type = raw.get("eventType")
        video_id = raw.get("videoId")
        if not event_type or not video_id:
            return None

        try:
            parsed_type = EventType(event_type)
        except ValueError:
            return None

        data = raw.get("data")
        return cls(
            event_type=parsed_type,
            video_id=str(video_id),
            timestamp=str(raw.get("timestamp") or current_iso_timestamp()),
            data=data if isinstance(data, dict) else {},
        )
