"""
Video-progress threshold detection.
"""

from __future__ import annotations

from playtrack.telemetry.events import PROGRESS_THRESHOLDS


class ProgressThresholds:
    """
    Report each progress threshold once as playback crosses it.

    Thresholds are percentages of the duration. Seeking backwards never
    re-arms a threshold; only ``reset`` does.
    """

    def __init__(self, thresholds: tuple[int, ...] = PROGRESS_THRESHOLDS):
        self.thresholds = tuple(sorted(thresholds))
        self._reached: set[int] = set()

    def update(self, position: float, duration: float) -> list[int]:
        """Return thresholds newly reached at this position, ascending."""
        if duration <= 0:
            return []

        progress = position / duration * 100
        crossed = [t for t in self.thresholds if progress >= t and t not in self._reached]
        self._reached.update(crossed)
        return crossed

    @property
    def reached(self) -> list[int]:
        return sorted(self._reached)

    def reset(self) -> None:
        self._reached.clear()
