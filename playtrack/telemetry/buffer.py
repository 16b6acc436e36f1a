"""Batching telemetry buffer with timer and size-triggered flushes."""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any

from playtrack.common.logger import get_logger
from playtrack.common.utils import chunks
from playtrack.telemetry.events import Event, EventType
from playtrack.telemetry.outbox import PendingOutbox
from playtrack.telemetry.policy import EventFilter, ServerPolicy
from playtrack.telemetry.transport import BatchTransport, SessionInfo

logger = get_logger(__name__)


class TelemetryBuffer:
    """
    Accumulates playback events and ships them in batches.

    A batch is sent when the buffer reaches ``max_batch_size`` events, when
    the flush timer fires, or when a caller forces a flush. Every event is
    in exactly one place at a time: the in-memory buffer, an in-flight
    batch, or the durable outbox (after a failed send). The buffer and the
    outbox are owned by this class alone.

    ``track`` and ``flush`` never raise.
    """

    def __init__(
        self,
        transport: BatchTransport,
        session: SessionInfo,
        outbox: PendingOutbox,
        policy: ServerPolicy | None = None,
        rng: random.Random | None = None,
        max_batch_size: int = 50,
        flush_interval_seconds: float = 30.0,
        video_id: str = "",
    ):
        self.transport = transport
        self.session = session
        self.outbox = outbox
        self.max_batch_size = max_batch_size
        self.flush_interval_seconds = flush_interval_seconds
        self.video_id = video_id
        self.enabled = True

        self._filter = EventFilter(policy or ServerPolicy.from_settings(), rng)
        self._buffer: list[Event] = []
        self._inflight: set[asyncio.Task] = set()
        self._timer_task: asyncio.Task | None = None
        self._last_flush = time.time()
        self._stats = {
            "batches_sent": 0,
            "events_sent": 0,
            "flush_errors": 0,
            "events_dropped": 0,
        }

    @property
    def policy(self) -> ServerPolicy:
        return self._filter.policy

    @policy.setter
    def policy(self, policy: ServerPolicy) -> None:
        self._filter.policy = policy

    # ==================== Tracking ====================

    def track(self, event_type: EventType | str, data: dict[str, Any] | None = None) -> bool:
        """
        Buffer an event unless tracking is disabled or the policy drops it.

        Returns True if the event was buffered.
        """
        try:
            event_type = EventType(event_type)
        except ValueError:
            logger.warning("Unknown event type", event_type=event_type)
            return False

        if not self.enabled or not self._filter.should_keep(event_type):
            self._stats["events_dropped"] += 1
            return False

        self._buffer.append(Event.create(event_type, self.video_id, data))

        if len(self._buffer) >= self.max_batch_size:
            self._flush_in_background()
        return True

    def _flush_in_background(self) -> None:
        """Send the current buffer as a task on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: the events stay buffered for the next flush.
            return

        batch = self._take_batch()
        task = loop.create_task(self._send_batch(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # ==================== Flushing ====================

    def _take_batch(self) -> list[Event]:
        """Swap out the buffer; later events land in a fresh list."""
        batch = self._buffer
        self._buffer = []
        self._last_flush = time.time()
        return batch

    async def flush(self) -> bool:
        """
        Send everything buffered as one batch.

        Returns False if the batch went to the outbox instead.
        """
        batch = self._take_batch()
        if not batch:
            return True
        return await self._send_batch(batch)

    async def _send_batch(self, batch: list[Event]) -> bool:
        try:
            await self.transport.send(self.session, batch)
        except asyncio.CancelledError:
            self.outbox.append(batch)
            raise
        except Exception as e:
            logger.error("Failed to send telemetry batch", events=len(batch), error=str(e))
            self._stats["flush_errors"] += 1
            self.outbox.append(batch)
            return False

        self._stats["batches_sent"] += 1
        self._stats["events_sent"] += len(batch)
        return True

    async def drain_outbox(self) -> bool:
        """
        Resend events left in the outbox by earlier sessions.

        Sends in chunks of ``max_batch_size``. The outbox is cleared only
        when every chunk succeeded; otherwise it keeps exactly the unsent
        remainder.
        """
        pending = self.outbox.load()
        if not pending:
            self.outbox.clear()
            return True

        logger.info("Found pending events in offline queue", events=len(pending))

        sent = 0
        for batch in chunks(pending, self.max_batch_size):
            try:
                await self.transport.send(self.session, batch)
            except Exception as e:
                remaining = pending[sent:]
                self.outbox.replace(remaining)
                logger.warning(
                    "Offline queue drain interrupted",
                    sent=sent,
                    remaining=len(remaining),
                    error=str(e),
                )
                return False
            sent += len(batch)
            self._stats["batches_sent"] += 1
            self._stats["events_sent"] += len(batch)

        self.outbox.clear()
        logger.info("Cleared offline queue - all events sent", events=sent)
        return True

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start the flush timer on the running loop."""
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop())

    async def _timer_loop(self) -> None:
        logger.debug("Telemetry flush timer started", interval=self.flush_interval_seconds)

        while True:
            try:
                await asyncio.sleep(self.flush_interval_seconds)
                if self._buffer:
                    await self.flush()
            except asyncio.CancelledError:
                logger.debug("Telemetry flush timer cancelled")
                break
            except Exception as e:
                logger.error("Flush timer error", error=str(e))

    async def stop(self) -> None:
        """Stop the timer, flush what remains and wait for in-flight sends."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        await self.flush()
        await self.join()

        logger.info("Telemetry buffer stopped", **self._stats)

    async def join(self) -> None:
        """Wait for every size-triggered send still in flight."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ==================== Introspection ====================

    @property
    def events(self) -> list[Event]:
        """Snapshot of buffered events, oldest first."""
        return list(self._buffer)

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "buffer_size": self.buffer_size,
            "inflight": len(self._inflight),
            "seconds_since_flush": time.time() - self._last_flush,
        }
