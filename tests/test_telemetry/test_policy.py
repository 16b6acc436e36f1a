"""
Tests for the server analytics policy.
"""

import random

import pytest

from playtrack.common.exceptions import PolicyFetchError
from playtrack.telemetry.events import EventType
from playtrack.telemetry.policy import (
    EventFilter,
    PolicyLevel,
    ServerPolicy,
    fetch_policy,
    parse_policy_response,
)

POLICY_URL = "http://stream.test/api/v1/admin/analytics/client-config"


class TestEventFilter:
    """Per-level filtering rules."""

    def test_full_keeps_everything(self) -> None:
        event_filter = EventFilter(ServerPolicy(level=PolicyLevel.FULL))
        assert all(event_filter.should_keep(t) for t in EventType)

    def test_critical_drops_everything(self) -> None:
        event_filter = EventFilter(ServerPolicy(level=PolicyLevel.CRITICAL))
        assert not any(event_filter.should_keep(t) for t in EventType)

    def test_analytics_disabled_drops_everything(self) -> None:
        event_filter = EventFilter(ServerPolicy(analytics_enabled=False))
        assert not any(event_filter.should_keep(t) for t in EventType)

    def test_high_load_drops_noisy_events(self) -> None:
        event_filter = EventFilter(ServerPolicy(level=PolicyLevel.HIGH_LOAD))

        for event_type in (
            EventType.BUFFER_START,
            EventType.BUFFER_END,
            EventType.QUALITY_CHANGE,
            EventType.SEEK,
            EventType.VIEW_PROGRESS,
        ):
            assert not event_filter.should_keep(event_type)

        for event_type in (
            EventType.SESSION_START,
            EventType.SESSION_END,
            EventType.VIEW_START,
            EventType.VIEW_COMPLETE,
            EventType.PAUSE,
            EventType.RESUME,
            EventType.ERROR,
        ):
            assert event_filter.should_keep(event_type)

    def test_sampling_rate_zero(self) -> None:
        event_filter = EventFilter(
            ServerPolicy(level=PolicyLevel.SAMPLING, sampling_rate=0.0),
            rng=random.Random(1),
        )

        assert not event_filter.should_keep(EventType.VIEW_PROGRESS)
        assert not event_filter.should_keep(EventType.BUFFER_START)
        assert not event_filter.should_keep(EventType.BUFFER_END)
        assert event_filter.should_keep(EventType.QUALITY_CHANGE)
        assert event_filter.should_keep(EventType.SEEK)
        assert event_filter.should_keep(EventType.SESSION_START)

    def test_sampling_frequency_tracks_rate(self) -> None:
        event_filter = EventFilter(
            ServerPolicy(level=PolicyLevel.SAMPLING, sampling_rate=0.3),
            rng=random.Random(1234),
        )

        kept = sum(event_filter.should_keep(EventType.VIEW_PROGRESS) for _ in range(10000))

        assert 2700 < kept < 3300

    def test_sampling_is_deterministic_with_seed(self) -> None:
        policy = ServerPolicy(level=PolicyLevel.SAMPLING, sampling_rate=0.5)

        first_filter = EventFilter(policy, random.Random(7))
        second_filter = EventFilter(policy, random.Random(7))

        first = [first_filter.should_keep(EventType.BUFFER_END) for _ in range(20)]
        second = [second_filter.should_keep(EventType.BUFFER_END) for _ in range(20)]

        assert first == second


class TestParsePolicy:
    """Tests for response parsing."""

    def test_wire_names(self) -> None:
        policy = parse_policy_response({
            "success": True,
            "data": {
                "analyticsEnabled": False,
                "level": "high_load",
                "samplingRate": 0.25,
                "progressIntervalMs": 15000,
            },
        })

        assert policy.analytics_enabled is False
        assert policy.level == PolicyLevel.HIGH_LOAD
        assert policy.sampling_rate == 0.25
        assert policy.progress_interval_seconds == 15.0

    @pytest.mark.parametrize(
        "body",
        [
            [],
            {"success": False, "message": "nope"},
            {"success": True},
            {"success": True, "data": {"level": "verbose"}},
            {"success": True, "data": {"samplingRate": 2}},
        ],
    )
    def test_malformed_responses(self, body) -> None:
        with pytest.raises(PolicyFetchError):
            parse_policy_response(body)


class TestFetchPolicy:
    """Tests for the single best-effort fetch."""

    @pytest.mark.asyncio
    async def test_fetch_success(self, http_client, server) -> None:
        server.set_policy(
            analyticsEnabled=True,
            level="sampling",
            samplingRate=0.5,
            progressIntervalMs=5000,
        )

        policy = await fetch_policy(http_client, POLICY_URL, token="token-123")

        assert policy.level == PolicyLevel.SAMPLING
        assert policy.progress_interval_ms == 5000
        request = server.requests[-1]
        assert request.method == "GET"
        assert request.headers["Authorization"] == "Bearer token-123"

    @pytest.mark.asyncio
    async def test_non_2xx_keeps_default(self, http_client, server) -> None:
        server.policy_status = 500
        default = ServerPolicy(level=PolicyLevel.HIGH_LOAD)

        assert await fetch_policy(http_client, POLICY_URL, default=default) is default

    @pytest.mark.asyncio
    async def test_offline_keeps_default(self, http_client, server) -> None:
        server.offline = True
        default = ServerPolicy()

        assert await fetch_policy(http_client, POLICY_URL, default=default) is default

    @pytest.mark.asyncio
    async def test_invalid_level_keeps_default(self, http_client, server) -> None:
        server.set_policy(level="verbose")
        default = ServerPolicy()

        assert await fetch_policy(http_client, POLICY_URL, default=default) is default

    @pytest.mark.asyncio
    async def test_reported_failure_keeps_default(self, http_client, server) -> None:
        server.policy_body = {"success": False, "message": "disabled"}
        default = ServerPolicy()

        assert await fetch_policy(http_client, POLICY_URL, default=default) is default

    @pytest.mark.asyncio
    async def test_default_is_settings_policy(self, http_client, server) -> None:
        server.policy_status = 404

        policy = await fetch_policy(http_client, POLICY_URL)

        assert policy == ServerPolicy.from_settings()
