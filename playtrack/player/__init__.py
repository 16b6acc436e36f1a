"""Player state machine and the engine/media collaborator interfaces it binds to."""

from playtrack.player.engine import (
    EngineError,
    EngineErrorKind,
    EngineEvent,
    HlsEngine,
    MediaElement,
    QualityLevel,
    ResumePrompt,
)
from playtrack.player.state_machine import PlayerState, PlayerStateMachine
from playtrack.player.thresholds import ProgressThresholds

__all__ = [
    "EngineError",
    "EngineErrorKind",
    "EngineEvent",
    "HlsEngine",
    "MediaElement",
    "QualityLevel",
    "ResumePrompt",
    "PlayerState",
    "PlayerStateMachine",
    "ProgressThresholds",
]
