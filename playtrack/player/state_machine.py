"""
Player state machine.

Translates media-element and HLS-engine callbacks into playback telemetry:

    idle -> loading -> ready -> {playing <-> paused} -> ended
                                  playing -> buffering -> playing
    any state -> error

Callbacks that do not fit the current state are logged and ignored; a
player callback must never fail playback.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from playtrack.common.exceptions import InvalidTransitionError
from playtrack.common.logger import get_logger
from playtrack.player.engine import (
    EngineError,
    EngineErrorKind,
    EngineEvent,
    HlsEngine,
    MediaElement,
    QualityLevel,
    ResumePrompt,
)
from playtrack.player.thresholds import ProgressThresholds
from playtrack.telemetry.events import QualityChangeReason
from playtrack.telemetry.service import VideoAnalyticsService
from playtrack.telemetry.tracker import PeriodicTask, best_available_quality, is_resume_eligible

logger = get_logger(__name__)

AUTO_QUALITY = "Auto"


class PlayerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


# ERROR is reachable from every state and is not listed here
TRANSITIONS: dict[PlayerState, frozenset[PlayerState]] = {
    PlayerState.IDLE: frozenset({PlayerState.LOADING}),
    PlayerState.LOADING: frozenset({PlayerState.READY}),
    PlayerState.READY: frozenset({PlayerState.PLAYING, PlayerState.LOADING}),
    PlayerState.PLAYING: frozenset({PlayerState.PAUSED, PlayerState.BUFFERING, PlayerState.ENDED}),
    PlayerState.PAUSED: frozenset({PlayerState.PLAYING, PlayerState.ENDED}),
    PlayerState.BUFFERING: frozenset({PlayerState.PLAYING, PlayerState.PAUSED}),
    PlayerState.ENDED: frozenset({PlayerState.PLAYING, PlayerState.LOADING}),
    PlayerState.ERROR: frozenset({PlayerState.LOADING}),
}


class PlayerStateMachine:
    """
    Drive an analytics service from player lifecycle callbacks.

    The ``on_*`` methods are bound directly to the media element's
    lifecycle events; ``handle_*`` methods to the HLS engine's events.
    """

    def __init__(
        self,
        analytics: VideoAnalyticsService,
        media: MediaElement,
        engine: HlsEngine | None = None,
        resume_prompt: ResumePrompt | None = None,
        on_threshold: Callable[[int], None] | None = None,
        on_state_change: Callable[[PlayerState], None] | None = None,
    ):
        self.analytics = analytics
        self.media = media
        self.engine = engine
        self.resume_prompt = resume_prompt
        self.on_threshold = on_threshold
        self.on_state_change = on_state_change

        self.state = PlayerState.IDLE
        self.levels: list[QualityLevel] = []
        self.current_height: int | None = None  # None = auto
        self._auto_label: str | None = None
        self.resume_at: float = 0.0
        self.thresholds = ProgressThresholds()

        self._session_started = False
        self._buffering = False
        self._seeking = False
        self._seek_from: float = 0.0
        self._last_position: float = 0.0
        self._progress_tick = PeriodicTask(
            "progress",
            analytics.policy.progress_interval_seconds,
            self.sample_progress,
        )

        if engine is not None:
            self.bind_engine(engine)

    def bind_engine(self, engine: HlsEngine) -> None:
        self.engine = engine
        engine.on(EngineEvent.MANIFEST_PARSED, self.handle_manifest_parsed)
        engine.on(EngineEvent.LEVEL_SWITCHED, self.handle_level_switched)
        engine.on(EngineEvent.ERROR, self.handle_engine_error)

    # ==================== Transitions ====================

    def can_transition(self, target: PlayerState) -> bool:
        return target == PlayerState.ERROR or target in TRANSITIONS[self.state]

    def _transition(self, target: PlayerState) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Cannot go from {self.state.value} to {target.value}",
                details={"from": self.state.value, "to": target.value},
            )
        self.state = target
        if self.on_state_change is not None:
            self.on_state_change(target)

    def _try_transition(self, target: PlayerState) -> bool:
        try:
            self._transition(target)
        except InvalidTransitionError as e:
            logger.debug("Ignoring player callback", **e.details)
            return False
        return True

    # ==================== Media Callbacks ====================

    async def on_load_start(self) -> None:
        if self._try_transition(PlayerState.LOADING):
            self.thresholds.reset()
            self._session_started = False
            self._buffering = False

    async def on_loaded_metadata(self) -> None:
        if self.state == PlayerState.IDLE:
            self._try_transition(PlayerState.LOADING)
        if not self._try_transition(PlayerState.READY):
            return

        self._offer_resume(self.media.duration)
        self._apply_preferred_quality()

    async def on_play(self) -> None:
        previous = self.state
        if not self._try_transition(PlayerState.PLAYING):
            return

        if not self._session_started:
            self._session_started = True
            self.analytics.start_video_tracking()
        elif previous in (PlayerState.PAUSED, PlayerState.ENDED):
            self.analytics.track_resume(self.media.current_time)

        if self.analytics.disposed:
            return
        self._progress_tick.interval = self.analytics.policy.progress_interval_seconds
        self._progress_tick.start()

    async def on_pause(self) -> None:
        # The element pauses on its own right before "ended"
        if self.media.ended:
            return
        if not self._try_transition(PlayerState.PAUSED):
            return

        # An open buffering episode stays open until the next "playing"
        self._progress_tick.stop()
        await self.analytics.track_pause(self.media.current_time)

    async def on_seeking(self) -> None:
        if not self._seeking:
            self._seeking = True
            self._seek_from = self._last_position

    async def on_seeked(self) -> None:
        if not self._seeking:
            return
        self._seeking = False
        to_position = self.media.current_time
        self.analytics.track_seek(self._seek_from, to_position)
        self._last_position = to_position

    async def on_waiting(self) -> None:
        if self._buffering:
            return
        if not self._try_transition(PlayerState.BUFFERING):
            return

        self._buffering = True
        self.analytics.track_buffer_start(self.media.current_time, self.current_quality_label)

    async def on_playing(self) -> None:
        if self._buffering:
            self._buffering = False
            if self.state == PlayerState.PAUSED:
                await self.on_play()
            elif self.state == PlayerState.BUFFERING:
                self._try_transition(PlayerState.PLAYING)
            self.analytics.track_buffer_end(self.current_quality_label)
            return

        if self.state in (PlayerState.READY, PlayerState.PAUSED):
            await self.on_play()

    async def on_ended(self) -> None:
        if not self._try_transition(PlayerState.ENDED):
            return

        self._buffering = False
        self._progress_tick.stop()
        await self.analytics.track_complete(self.media.duration)

    async def on_time_update(self) -> None:
        if not self._seeking:
            self._last_position = self.media.current_time

    async def on_error(self, message: str, code: str | None = None) -> None:
        self._transition(PlayerState.ERROR)
        self._buffering = False
        self._progress_tick.stop()
        await self.analytics.track_error(message, code, self.media.current_time)

    # ==================== Engine Callbacks ====================

    async def handle_manifest_parsed(self, levels: list[QualityLevel]) -> None:
        self.levels = sorted(levels, key=lambda level: level.height, reverse=True)

    async def handle_level_switched(self, index: int) -> None:
        level = self._level_by_index(index)
        if level is None or self.engine is None:
            return
        # User selections are reported by select_quality
        if not self.engine.auto_level_enabled:
            return

        previous = self._auto_label or AUTO_QUALITY
        if previous != level.label:
            self.analytics.track_quality_change(previous, level.label, QualityChangeReason.AUTO)
        self._auto_label = level.label

    async def handle_engine_error(self, error: EngineError) -> None:
        if not error.fatal or self.engine is None:
            return

        logger.error("Fatal engine error", kind=error.kind.value, details=error.details)
        if error.kind == EngineErrorKind.NETWORK:
            self.engine.start_load()
        elif error.kind == EngineErrorKind.MEDIA:
            self.engine.recover_media_error()
        else:
            await self.on_error(f"Playback error: {error.details}", error.details or None)

    # ==================== Viewer Actions ====================

    def select_quality(self, height: int | None) -> bool:
        """Viewer picked a rendition (``None`` = automatic)."""
        if self.engine is None:
            return False

        previous = f"{self.current_height}p" if self.current_height else AUTO_QUALITY

        if height is None:
            self.engine.current_level = -1
            self.current_height = None
            self.analytics.track_quality_change(previous, AUTO_QUALITY, QualityChangeReason.USER)
            return True

        level = self._level_by_height(height)
        if level is None:
            return False

        self.engine.current_level = level.index
        self.current_height = height
        self.analytics.track_quality_change(previous, level.label, QualityChangeReason.USER)
        return True

    def handle_resume(self) -> None:
        """Resume prompt accepted: jump to the stored point and play."""
        if self.resume_at > 0:
            self.media.seek(self.resume_at)
            self.media.play()
        if self.resume_prompt is not None:
            self.resume_prompt.dismiss()

    # ==================== Progress ====================

    def sample_progress(self) -> None:
        """One progress tick while playing."""
        if self.analytics.disposed:
            self._progress_tick.stop()
            return
        if self.media.paused:
            return

        position = self.media.current_time
        duration = self.media.duration
        bandwidth = self.engine.bandwidth_estimate if self.engine is not None else None

        self.analytics.track_progress(
            position,
            duration,
            self.current_quality_label,
            bandwidth,
            self.media.playback_rate,
        )

        for threshold in self.thresholds.update(position, duration):
            logger.debug("Progress threshold reached", threshold=threshold)
            if self.on_threshold is not None:
                self.on_threshold(threshold)

    @property
    def current_quality_label(self) -> str | None:
        if self.engine is None:
            return None
        level = self._level_by_index(self.engine.current_level)
        return level.label if level is not None else self._auto_label

    @property
    def progress_tick_running(self) -> bool:
        return self._progress_tick.running

    async def close(self) -> None:
        """Tear down: stop the progress tick and dispose the analytics service."""
        self._progress_tick.stop()
        await self.analytics.dispose()

    # ==================== Helpers ====================

    def _offer_resume(self, duration: float) -> None:
        point = self.analytics.get_resume_point()
        margin = self.analytics.settings.resume.margin_seconds
        if not is_resume_eligible(point, duration, margin):
            return

        self.resume_at = point
        if self.resume_prompt is not None:
            self.resume_prompt.offer(point)

    def _apply_preferred_quality(self) -> None:
        if self.engine is None:
            return
        preferred = self.analytics.get_preferred_quality()
        if not preferred or not self.levels:
            return
        # Automatic selection is the engine default
        if preferred.lower() == AUTO_QUALITY.lower():
            return

        label = best_available_quality(preferred, [level.label for level in self.levels])
        level = next((lv for lv in self.levels if lv.label == label), None)
        if level is None:
            return

        self.engine.current_level = level.index
        self.current_height = level.height
        logger.info("Applied preferred quality", preferred=preferred, level=level.label)

    def _level_by_index(self, index: int) -> QualityLevel | None:
        if index < 0:
            return None
        return next((level for level in self.levels if level.index == index), None)

    def _level_by_height(self, height: int) -> QualityLevel | None:
        return next((level for level in self.levels if level.height == height), None)
