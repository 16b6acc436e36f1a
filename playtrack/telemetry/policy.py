"""
Server analytics policy: fetch once per session and filter events by it.

The policy is fetched a single time at initialization and never refreshed.
A policy change on the server mid-session is not picked up until the next
session starts.
"""

from __future__ import annotations

import random
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from playtrack.common.config import PolicySettings, get_settings
from playtrack.common.exceptions import PolicyFetchError
from playtrack.common.logger import get_logger
from playtrack.telemetry.events import EventType

logger = get_logger(__name__)


class PolicyLevel(str, Enum):
    """Server-controlled verbosity/sampling mode."""
    FULL = "full"
    SAMPLING = "sampling"
    HIGH_LOAD = "high_load"
    CRITICAL = "critical"


# Dropped outright under high load
HIGH_LOAD_DROPPED: frozenset[EventType] = frozenset({
    EventType.BUFFER_START,
    EventType.BUFFER_END,
    EventType.QUALITY_CHANGE,
    EventType.SEEK,
    EventType.VIEW_PROGRESS,
})

# Kept with probability ``sampling_rate`` under sampling
SAMPLED_EVENTS: frozenset[EventType] = frozenset({
    EventType.VIEW_PROGRESS,
    EventType.BUFFER_START,
    EventType.BUFFER_END,
})


class ServerPolicy(BaseModel):
    """Client analytics configuration served by the video-stream API."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    analytics_enabled: bool = Field(True, alias="analyticsEnabled")
    level: PolicyLevel = Field(PolicyLevel.FULL)
    sampling_rate: float = Field(1.0, alias="samplingRate", ge=0.0, le=1.0)
    progress_interval_ms: int = Field(10000, alias="progressIntervalMs", gt=0)

    @classmethod
    def from_settings(cls, settings: PolicySettings | None = None) -> ServerPolicy:
        """Default policy in force until a fetch succeeds."""
        settings = settings or get_settings().policy
        return cls(
            analytics_enabled=settings.analytics_enabled,
            level=PolicyLevel(settings.level),
            sampling_rate=settings.sampling_rate,
            progress_interval_ms=settings.progress_interval_ms,
        )

    @property
    def progress_interval_seconds(self) -> float:
        return self.progress_interval_ms / 1000


class EventFilter:
    """
    Decide per event type whether the active policy keeps an event.

    The random source is injectable so sampling can be made deterministic.
    """

    def __init__(self, policy: ServerPolicy, rng: random.Random | None = None):
        self.policy = policy
        self.rng = rng or random.Random()

    def should_keep(self, event_type: EventType) -> bool:
        policy = self.policy
        if not policy.analytics_enabled:
            return False

        if policy.level == PolicyLevel.CRITICAL:
            return False

        if policy.level == PolicyLevel.HIGH_LOAD:
            return event_type not in HIGH_LOAD_DROPPED

        if policy.level == PolicyLevel.SAMPLING:
            if event_type == EventType.QUALITY_CHANGE:
                return True
            if event_type in SAMPLED_EVENTS:
                return self.rng.random() < policy.sampling_rate
            return True

        return True


def parse_policy_response(body: object) -> ServerPolicy:
    """
    Parse a ``client-config`` response body.

    Raises:
        PolicyFetchError: If the envelope or its data is malformed.
    """
    if not isinstance(body, dict):
        raise PolicyFetchError("Policy response is not an object")
    if body.get("success") is False:
        raise PolicyFetchError(
            "Policy endpoint reported failure",
            details={"message": body.get("message")},
        )

    data = body.get("data")
    if not isinstance(data, dict):
        raise PolicyFetchError("Policy response has no data")

    try:
        return ServerPolicy.model_validate(data)
    except ValidationError as e:
        raise PolicyFetchError(
            "Invalid policy data",
            details={"errors": e.errors(include_url=False)},
        )


async def fetch_policy(
    client: httpx.AsyncClient,
    url: str,
    token: str | None = None,
    default: ServerPolicy | None = None,
) -> ServerPolicy:
    """
    Fetch the analytics policy with a single best-effort GET.

    Never raises; any failure leaves the default policy in force.
    """
    default = default or ServerPolicy.from_settings()

    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = await client.get(url, headers=headers)
        response.raise_for_status()
        policy = parse_policy_response(response.json())
    except (httpx.HTTPError, ValueError, PolicyFetchError) as e:
        logger.warning("Failed to fetch analytics policy, using defaults", url=url, error=str(e))
        return default

    logger.info(
        "Analytics policy loaded",
        level=policy.level.value,
        sampling_rate=policy.sampling_rate,
        analytics_enabled=policy.analytics_enabled,
    )
    return policy
