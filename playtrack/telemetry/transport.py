"""
Batch delivery to the telemetry ingestion API.

One POST per flush; any 2xx response is success.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from playtrack.common.exceptions import TransportError
from playtrack.common.logger import get_logger
from playtrack.common.utils import current_timestamp_ms, json_dumps
from playtrack.telemetry.events import Event, PlaybackPurpose, PlayerSource

logger = get_logger(__name__)


@dataclass
class SessionInfo:
    """Identity fields attached to every batch."""

    session_id: str
    fingerprint: str
    user_id: str | None = None
    source: PlayerSource = PlayerSource.WEB
    purpose: PlaybackPurpose = PlaybackPurpose.STREAM


def make_idempotency_key(batch_size: int, timestamp_ms: int | None = None) -> str:
    """Deduplication key derived from the flush time and batch size."""
    if timestamp_ms is None:
        timestamp_ms = current_timestamp_ms()
    return f"batch_{timestamp_ms}_{batch_size}"


def build_batch_payload(
    session: SessionInfo,
    events: list[Event],
    idempotency_key: str,
) -> dict[str, Any]:
    """Assemble the ingestion request body."""
    return {
        "sessionId": session.session_id,
        "userId": session.user_id,
        "fingerprint": session.fingerprint,
        "idempotencyKey": idempotency_key,
        "source": session.source.value,
        "purpose": session.purpose.value,
        "events": [e.to_dict() for e in events],
    }


class BatchTransport:
    """Sends event batches over an ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        auth_token: str | None = None,
    ):
        self.client = client
        self.url = url
        self.auth_token = auth_token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
            headers["Account-ID"] = self.auth_token
        return headers

    async def send(self, session: SessionInfo, events: list[Event]) -> str:
        """
        Send one batch.

        Returns:
            The idempotency key used for the batch.

        Raises:
            TransportError: On network failure or a non-2xx response.
        """
        idempotency_key = make_idempotency_key(len(events))
        payload = build_batch_payload(session, events, idempotency_key)

        try:
            response = await self.client.post(
                self.url,
                content=json_dumps(payload),
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Batch request failed: {e}",
                details={"idempotency_key": idempotency_key},
            ) from e

        if not response.is_success:
            raise TransportError(
                f"Server returned {response.status_code}",
                status_code=response.status_code,
                details={"idempotency_key": idempotency_key},
            )

        logger.debug(
            "Batch sent",
            events=len(events),
            idempotency_key=idempotency_key,
        )
        return idempotency_key
