"""
Collaborator interfaces the player state machine depends on.

The HLS engine is seen only through a narrow protocol (levels, current
level, bandwidth estimate, recovery calls and three events), so the state
machine never depends on a concrete engine's shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol, runtime_checkable


@dataclass(frozen=True)
class QualityLevel:
    """One rendition of the HLS manifest."""

    height: int
    bitrate: int
    index: int

    @property
    def label(self) -> str:
        return f"{self.height}p"


class EngineErrorKind(str, Enum):
    """Engine-side classification of a playback error."""
    NETWORK = "network"
    MEDIA = "media"
    OTHER = "other"


@dataclass(frozen=True)
class EngineError:
    kind: EngineErrorKind
    fatal: bool
    details: str = ""


class EngineEvent(str, Enum):
    MANIFEST_PARSED = "manifest_parsed"
    LEVEL_SWITCHED = "level_switched"
    ERROR = "error"


EngineHandler = Callable[..., Awaitable[None]]


@runtime_checkable
class HlsEngine(Protocol):
    """
    Narrow view of an HLS-capable media engine.

    ``current_level`` is the index into ``levels``; -1 means automatic
    selection. Registered handlers are coroutine functions the engine
    adapter awaits: ``manifest_parsed(levels)``, ``level_switched(index)``
    and ``error(EngineError)``.
    """

    @property
    def levels(self) -> list[QualityLevel]: ...

    current_level: int

    @property
    def auto_level_enabled(self) -> bool: ...

    @property
    def bandwidth_estimate(self) -> float: ...

    def start_load(self) -> None: ...

    def recover_media_error(self) -> None: ...

    def on(self, event: EngineEvent, handler: EngineHandler) -> None: ...


@runtime_checkable
class MediaElement(Protocol):
    """Standard media element primitives."""

    current_time: float
    duration: float
    paused: bool
    ended: bool
    playback_rate: float

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...


class ResumePrompt(Protocol):
    """UI that offers to resume; calls back into ``handle_resume`` on accept."""

    def offer(self, position: float) -> None: ...

    def dismiss(self) -> None: ...
