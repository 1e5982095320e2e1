"""
Progress events and the in-process fan-out bus.

Delivery is best-effort and at-most-once: events go to whoever is
subscribed at publish time, with no replay for late subscribers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator


logger = logging.getLogger(__name__)

FETCHING = "fetching"
PROCESSING = "processing"
GENERATING = "generating"
COMPLETE = "complete"
ERROR = "error"
WARNING = "warning"

STAGES = (FETCHING, PROCESSING, GENERATING, COMPLETE, ERROR, WARNING)

# Synthetic acknowledgment sent to each new subscriber; not a job stage
CONNECTED = "connected"


@dataclass(frozen=True)
class ProgressEvent:
    """One status update. ``None`` fields are left off the wire."""
    stage: str
    message: str | None = None
    current: int | None = None
    total: int | None = None
    date: str | None = None
    video_path: str | None = None

    def to_dict(self) -> dict:
        data = {
            'stage': self.stage,
            'message': self.message,
            'current': self.current,
            'total': self.total,
            'date': self.date,
            'videoPath': self.video_path,
        }
        return {k: v for k, v in data.items() if v is not None}


class ProgressBus:
    """
    Fan-out channel from the running job to live observers.

    Each subscriber gets its own bounded queue. A subscriber that falls
    too far behind drops events rather than stalling the publisher.
    """

    def __init__(self, heartbeat_interval: float = 30.0, queue_size: int = 256):
        self.heartbeat_interval = heartbeat_interval
        self.queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ProgressEvent) -> None:
        """Deliver to every current subscriber. Never blocks."""
        logger.debug("Publishing %s to %d observers", event.to_dict(), len(self._subscribers))
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Observer queue full; dropping %s event", event.stage)

    async def subscribe(self) -> AsyncIterator[ProgressEvent | None]:
        """
        Stream events to one observer until it goes away.

        Yields a ``connected`` event first, then published events. ``None``
        is yielded on every heartbeat tick; the tick schedule is fixed per
        connection and does not slip when events arrive.

        The subscription is removed as soon as the consumer stops iterating
        (transport closed, generator closed or cancelled).
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        logger.info("Observer connected (%d total)", len(self._subscribers))
        loop = asyncio.get_running_loop()
        try:
            yield ProgressEvent(stage=CONNECTED, message="Connected to progress stream")
            next_beat = loop.time() + self.heartbeat_interval
            while True:
                timeout = max(0.0, next_beat - loop.time())
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_beat += self.heartbeat_interval
                    yield None
                    continue
                yield event
        finally:
            self._subscribers.discard(queue)
            logger.info("Observer disconnected (%d remaining)", len(self._subscribers))


class ProgressReporter:
    """
    The single writer of one job's progress state.

    Pipeline components report through this; the state itself is only
    ever read by observers via published events.
    """

    def __init__(self, bus: ProgressBus):
        self.bus = bus
        self._state = ProgressEvent(stage=FETCHING)

    @property
    def stage(self) -> str:
        return self._state.stage

    def emit(
        self,
        stage: str,
        message: str | None = None,
        current: int | None = None,
        total: int | None = None,
        date: str | None = None,
        video_path: str | None = None,
    ) -> ProgressEvent:
        if stage not in STAGES:
            raise ValueError(f"Unknown progress stage: {stage}")
        event = ProgressEvent(
            stage=stage,
            message=message,
            current=current,
            total=total,
            date=date,
            video_path=video_path,
        )
        # Warnings are side-channel notes and do not move the job's stage
        if stage != WARNING:
            self._state = event
        self.bus.publish(event)
        return event
