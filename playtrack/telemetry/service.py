"""
Video analytics service.

One explicitly constructed instance per player. It owns the telemetry
buffer, the durable store handle, the HTTP client and the resume-point
tick, and exposes the tracking surface the player state machine calls.

Usage:
    async with VideoAnalyticsService(base_url="https://stream.example.com", video_id="v1") as analytics:
        analytics.start_video_tracking()
        analytics.track_progress(12.0, 300.0, quality="720p")
        await analytics.track_pause()
"""

from __future__ import annotations

import platform
import random
import time
from typing import Any, Callable

import httpx

from playtrack.common.config import Settings, get_settings
from playtrack.common.logger import clear_log_context, get_logger, log_context
from playtrack.common.storage import KeyValueStore, create_store, load_or_create_fingerprint
from playtrack.common.utils import generate_session_id
from playtrack.telemetry.buffer import TelemetryBuffer
from playtrack.telemetry.events import EventType, PlaybackPurpose, PlayerSource, QualityChangeReason
from playtrack.telemetry.outbox import PendingOutbox
from playtrack.telemetry.policy import ServerPolicy, fetch_policy
from playtrack.telemetry.tracker import (
    BandwidthAccumulator,
    PeriodicTask,
    QualityPreferenceStore,
    ResumePointStore,
    best_available_quality,
)
from playtrack.telemetry.transport import BatchTransport, SessionInfo

logger = get_logger(__name__)


class VideoAnalyticsService:
    """Playback telemetry for one player instance."""

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        video_id: str = "",
        user_id: str | None = None,
        source: PlayerSource | str | None = None,
        purpose: PlaybackPurpose | str | None = None,
        store: KeyValueStore | None = None,
        client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        api = self.settings.api
        telemetry = self.settings.telemetry

        self.base_url = (base_url or api.base_url).rstrip("/")
        self.auth_token = auth_token if auth_token is not None else api.auth_token
        self._owns_store = store is None
        self.store = store or create_store(self.settings.storage)
        self.clock = clock

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=api.request_timeout)

        self.session = SessionInfo(
            session_id=generate_session_id(),
            fingerprint="",
            user_id=user_id,
            source=PlayerSource(source or telemetry.source),
            purpose=PlaybackPurpose(purpose or telemetry.purpose),
        )

        self.transport = BatchTransport(
            self.client,
            f"{self.base_url}{api.batch_path}",
            auth_token=self.auth_token or None,
        )
        self.buffer = TelemetryBuffer(
            transport=self.transport,
            session=self.session,
            outbox=PendingOutbox(self.store, max_events=telemetry.max_pending_events),
            policy=ServerPolicy.from_settings(self.settings.policy),
            rng=rng,
            max_batch_size=telemetry.max_batch_size,
            flush_interval_seconds=telemetry.batch_interval_seconds,
            video_id=video_id,
        )
        # Nothing is accepted until the outbox has been drained
        self.buffer.enabled = False

        self.resume_points = ResumePointStore(self.store)
        self.quality_preference = QualityPreferenceStore(self.store)
        self.bandwidth = BandwidthAccumulator()
        self._resume_tick = PeriodicTask(
            "resume_point",
            self.settings.resume.interval_seconds,
            self._snapshot_resume_point,
        )

        self.current_position: float = 0.0
        self.total_watched: float = 0.0
        self.last_quality: str | None = None
        self._buffer_started_at: float | None = None
        self._tracking = False
        self._completed = False
        self._initialized = False
        self._disposed = False

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Resolve the fingerprint, drain the outbox, fetch the policy and start the flush timer."""
        self.session.fingerprint = load_or_create_fingerprint(
            self.store, self.settings.telemetry.fingerprint_platform
        )
        log_context(session_id=self.session.session_id, video_id=self.video_id)

        await self.buffer.drain_outbox()

        policy = await fetch_policy(
            self.client,
            f"{self.base_url}{self.settings.api.policy_path}",
            token=self.auth_token or None,
            default=self.buffer.policy,
        )
        self.buffer.policy = policy
        self.buffer.enabled = self.session.source != PlayerSource.ADMIN and policy.analytics_enabled

        self.buffer.start()
        self._initialized = True

        logger.info(
            "Analytics initialized",
            enabled=self.enabled,
            fingerprint=self.session.fingerprint,
            level=policy.level.value,
        )

    async def dispose(self) -> None:
        """End the session, stop every timer and flush what remains. Idempotent."""
        if self._disposed:
            return
        self._disposed = True

        if self._tracking:
            await self.stop_video_tracking(self.current_position)
        self._resume_tick.stop()
        await self.buffer.stop()
        self.buffer.enabled = False

        if self._owns_client:
            await self.client.aclose()
        if self._owns_store:
            self.store.close()
        clear_log_context()

    async def __aenter__(self) -> VideoAnalyticsService:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    # ==================== Session ====================

    @property
    def enabled(self) -> bool:
        return self.buffer.enabled

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def policy(self) -> ServerPolicy:
        return self.buffer.policy

    @property
    def video_id(self) -> str:
        return self.buffer.video_id

    def update_auth_token(self, token: str | None) -> None:
        self.auth_token = token or ""
        self.transport.auth_token = token or None

    def update_purpose(self, purpose: PlaybackPurpose | str) -> None:
        purpose = PlaybackPurpose(purpose)
        if self.session.purpose != purpose:
            logger.info("Updating playback purpose", purpose=purpose.value)
            self.session.purpose = purpose

    def start_video_tracking(self, video_id: str | None = None) -> None:
        """Open a fresh session for a video and emit its start events."""
        if not self.enabled or self._disposed:
            return

        if video_id:
            self.buffer.video_id = video_id
        self.current_position = 0.0
        self.total_watched = 0.0
        self.bandwidth.reset()
        self._completed = False
        self.session.session_id = generate_session_id()
        log_context(session_id=self.session.session_id, video_id=self.video_id)

        self.buffer.track(EventType.SESSION_START, {
            "platform": platform.system(),
            "pythonVersion": platform.python_version(),
            "userAgent": f"{self.settings.app_name}/{self.settings.app_version}",
        })
        self.buffer.track(EventType.VIEW_START, {"position": 0})

        self._tracking = True
        self._resume_tick.start()

    async def stop_video_tracking(
        self,
        final_position: float | None = None,
        completion_pct: float | None = None,
    ) -> None:
        """Emit ``session_end``, persist the final position and flush."""
        self._resume_tick.stop()
        if not self.enabled:
            return

        self.buffer.track(EventType.SESSION_END, {
            "position": final_position if final_position is not None else self.current_position,
            "totalWatched": self.total_watched,
            "completionPct": completion_pct,
            "bandwidthBytes": self.bandwidth.total_bytes,
        })

        if final_position is not None and final_position > 0 and not self._completed:
            self.save_resume_point(final_position)

        self._tracking = False
        await self.buffer.flush()

    # ==================== Event Tracking ====================

    def track_event(self, event_type: EventType | str, data: dict[str, Any] | None = None) -> bool:
        return self.buffer.track(event_type, data)

    def track_video_open(self, data: dict[str, Any] | None = None) -> None:
        self.buffer.track(EventType.VIDEO_OPEN, data)

    def track_progress(
        self,
        position: float,
        duration: float,
        quality: str | None = None,
        bandwidth: float | None = None,
        playback_rate: float = 1.0,
    ) -> None:
        if not self.enabled:
            return

        self.current_position = position
        self.total_watched = max(self.total_watched, position)
        self.bandwidth.add(bandwidth)

        data: dict[str, Any] = {"position": position, "duration": duration}
        if quality:
            data["quality"] = quality
        if bandwidth:
            data["bandwidth"] = bandwidth
        data["playbackSpeed"] = playback_rate
        data["totalWatched"] = self.total_watched

        self.buffer.track(EventType.VIEW_PROGRESS, data)

    def track_seek(self, from_position: float, to_position: float) -> None:
        if not self.enabled:
            return
        self.buffer.track(EventType.SEEK, {
            "fromPosition": from_position,
            "toPosition": to_position,
            "position": to_position,
        })

    def track_quality_change(
        self,
        from_quality: str,
        to_quality: str,
        reason: QualityChangeReason | str = QualityChangeReason.USER,
    ) -> None:
        reason = QualityChangeReason(reason)
        # The viewer's choice is kept even when tracking is off
        if reason == QualityChangeReason.USER:
            self.save_preferred_quality(to_quality)
        self.last_quality = to_quality

        if not self.enabled:
            return
        self.buffer.track(EventType.QUALITY_CHANGE, {
            "fromQuality": from_quality,
            "toQuality": to_quality,
            "qualityChangeReason": reason.value,
        })

    async def track_pause(self, position: float | None = None) -> None:
        """Pauses are checkpoints: the buffer is flushed right away."""
        if not self.enabled:
            return
        self.buffer.track(EventType.PAUSE, {
            "position": position if position is not None else self.current_position,
            "totalWatched": self.total_watched,
        })
        await self.buffer.flush()

    def track_resume(self, position: float | None = None) -> None:
        if not self.enabled:
            return
        self.buffer.track(EventType.RESUME, {
            "position": position if position is not None else self.current_position,
        })

    def track_buffer_start(self, position: float | None = None, quality: str | None = None) -> None:
        if not self.enabled:
            return
        self._buffer_started_at = self.clock()
        data: dict[str, Any] = {
            "position": position if position is not None else self.current_position,
        }
        if quality:
            data["quality"] = quality
        self.buffer.track(EventType.BUFFER_START, data)

    def track_buffer_end(self, quality: str | None = None) -> None:
        if not self.enabled:
            return
        elapsed = 0.0
        if self._buffer_started_at is not None:
            elapsed = self.clock() - self._buffer_started_at
        data: dict[str, Any] = {"bufferDuration": elapsed}
        if quality:
            data["quality"] = quality
        self.buffer.track(EventType.BUFFER_END, data)
        self._buffer_started_at = None

    async def track_complete(self, duration: float) -> None:
        """Emit ``view_complete``, forget the resume point and flush."""
        if not self.enabled:
            return
        self.buffer.track(EventType.VIEW_COMPLETE, {
            "duration": duration,
            "totalWatched": self.total_watched,
            "completionPct": 100,
        })
        self._completed = True
        self._resume_tick.stop()
        self.clear_resume_point()
        await self.buffer.flush()

    async def track_error(
        self,
        error_message: str,
        error_code: str | None = None,
        position: float | None = None,
    ) -> None:
        """Errors are flushed immediately instead of waiting for the timer."""
        if not self.enabled:
            return
        data: dict[str, Any] = {"errorMessage": error_message}
        if error_code:
            data["errorCode"] = error_code
        data["position"] = position if position is not None else self.current_position
        self.buffer.track(EventType.ERROR, data)
        await self.buffer.flush()

    async def flush(self) -> bool:
        return await self.buffer.flush()

    # ==================== Resume Point ====================

    def _snapshot_resume_point(self) -> None:
        if self.current_position > 0:
            self.save_resume_point(self.current_position)

    def save_resume_point(self, position: float) -> bool:
        return self.resume_points.save(self.video_id, position)

    def get_resume_point(self, video_id: str | None = None) -> float:
        return self.resume_points.get(video_id or self.video_id)

    def clear_resume_point(self, video_id: str | None = None) -> bool:
        return self.resume_points.clear(video_id or self.video_id)

    # ==================== Quality Preference ====================

    def save_preferred_quality(self, quality: str) -> bool:
        return self.quality_preference.save(quality)

    def get_preferred_quality(self) -> str | None:
        return self.quality_preference.get()

    def get_best_available_quality(self, available: list[str]) -> str | None:
        return best_available_quality(self.get_preferred_quality(), available)
