"""Telemetry engine - event model, batching, outbox, policy and resume/quality tracking."""

from playtrack.telemetry.buffer import TelemetryBuffer
from playtrack.telemetry.events import Event, EventType, PlaybackPurpose, PlayerSource, QualityChangeReason
from playtrack.telemetry.outbox import PendingOutbox
from playtrack.telemetry.policy import EventFilter, PolicyLevel, ServerPolicy, fetch_policy
from playtrack.telemetry.service import VideoAnalyticsService
from playtrack.telemetry.tracker import best_available_quality, is_resume_eligible

__all__ = [
    "Event",
    "EventType",
    "PlaybackPurpose",
    "PlayerSource",
    "QualityChangeReason",
    "TelemetryBuffer",
    "PendingOutbox",
    "EventFilter",
    "PolicyLevel",
    "ServerPolicy",
    "fetch_policy",
    "VideoAnalyticsService",
    "best_available_quality",
    "is_resume_eligible",
]
