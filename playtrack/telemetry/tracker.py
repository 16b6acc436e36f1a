"""
Resume points, quality preference and bandwidth accumulation.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from playtrack.common.logger import get_logger
from playtrack.common.storage import KeyValueStore, StoreKeys

logger = get_logger(__name__)

# Highest first
QUALITY_ORDER: tuple[str, ...] = ("4k", "1440p", "1080p", "720p", "480p", "360p")


def is_resume_eligible(point: float, duration: float, margin: float = 5.0) -> bool:
    """Whether a stored point is worth offering to the viewer."""
    return margin < point < duration - margin


def best_available_quality(preferred: str | None, available: list[str]) -> str | None:
    """
    Resolve a preferred quality label against the available ones.

    Walks ``QUALITY_ORDER`` downward from the preferred rank and returns the
    first available label containing that rank's digits. Falls back to the
    first available label.
    """
    if not available:
        return None
    if not preferred:
        return available[0]

    try:
        start = QUALITY_ORDER.index(preferred.lower())
    except ValueError:
        return available[0]

    for rank in QUALITY_ORDER[start:]:
        token = rank.replace("p", "")
        for label in available:
            if token in label.lower():
                return label

    return available[0]


class ResumePointStore:
    """Per-video playback position in the durable store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, video_id: str, position: float) -> bool:
        if not video_id:
            return False
        return self.store.set(StoreKeys.resume_point(video_id), repr(float(position)))

    def get(self, video_id: str) -> float:
        """Stored position in seconds, 0 when absent or unreadable."""
        if not video_id:
            return 0.0
        raw = self.store.get(StoreKeys.resume_point(video_id))
        if not raw:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            return 0.0

    def clear(self, video_id: str) -> bool:
        if not video_id:
            return False
        return self.store.remove(StoreKeys.resume_point(video_id))


class QualityPreferenceStore:
    """Device-wide preferred quality label."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def save(self, quality: str) -> bool:
        saved = self.store.set(StoreKeys.PREFERRED_QUALITY, quality)
        if saved:
            logger.info("Saved preferred quality", quality=quality)
        return saved

    def get(self) -> str | None:
        return self.store.get(StoreKeys.PREFERRED_QUALITY)


class BandwidthAccumulator:
    """
    Running sum of per-sample bandwidth estimates for a session.

    This is a coarse cumulative signal: each progress sample contributes its
    instantaneous estimate, regardless of how long the sample interval was.
    It is not a throughput figure.
    """

    def __init__(self) -> None:
        self.total_bytes: float = 0

    def add(self, sample: float | None) -> None:
        if sample and sample > 0:
            self.total_bytes += sample

    def reset(self) -> None:
        self.total_bytes = 0


class PeriodicTask:
    """
    Run a synchronous callback every ``interval`` seconds on the running loop.

    Used for the resume-point snapshot and the progress sampling ticks.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], None]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self.stop()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, tick not started", tick=self.name)
            return
        self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.callback()
            except Exception as e:
                logger.error("Tick callback failed", tick=self.name, error=str(e))

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
