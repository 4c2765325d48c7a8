"""
Progress Channel
Publishes typed progress events over Redis pub/sub and persists the
percentage to the job record.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from redis.exceptions import RedisError

from vidgen.core.redis import RedisManager
from vidgen.schemas.progress import EventType, ProgressEvent

logger = logging.getLogger(__name__)


def channel_name(job_id: str) -> str:
    return f"job:{job_id}:progress"


def remap(percent: float, low: float, high: float) -> int:
    """Map a 0..100 sub-progress linearly into ``[low, high]``."""
    percent = min(max(percent, 0), 100)
    return int(low + percent / 100 * (high - low))


def stage_bands(stages: Sequence[str], start: int = 10, span: int = 80) -> List[Tuple[str, int, int]]:
    """
    Split ``span`` points evenly between ``stages`` starting at ``start``.

    >>> stage_bands(["merge", "encode"])
    [('merge', 10, 50), ('encode', 50, 90)]
    """
    if not stages:
        return []
    weight = span / len(stages)
    bands = []
    for i, stage in enumerate(stages):
        low = start + weight * i
        bands.append((stage, round(low), round(low + weight)))
    return bands


class ProgressChannel:
    """Redis pub/sub broker for progress events."""

    def __init__(self, redis_manager: RedisManager):
        self.redis_manager = redis_manager

    async def publish(self, job_id: str, event: ProgressEvent):
        """Publish one event. Broker failures are logged, never raised."""
        try:
            client = self.redis_manager.get_async_connection()
            await client.publish(channel_name(job_id), event.to_json())
        except RedisError as e:
            logger.warning(f"[ProgressChannel] Publish failed for job {job_id}: {e}")

    @asynccontextmanager
    async def subscribe(self, job_id: str) -> AsyncIterator[AsyncIterator[str]]:
        """
        Subscribe to ``job_id`` and yield an iterator of raw JSON payloads.

        The subscription is registered before the block runs, so anything
        published after entering is delivered.
        """
        client = self.redis_manager.get_async_connection()
        pubsub = client.pubsub()
        await pubsub.subscribe(channel_name(job_id))
        messages = self._messages(pubsub)
        try:
            yield messages
        finally:
            await messages.aclose()
            await pubsub.unsubscribe(channel_name(job_id))
            await pubsub.aclose()

    @staticmethod
    async def _messages(pubsub) -> AsyncIterator[str]:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message["data"]
            yield data.decode() if isinstance(data, bytes) else data


class ProgressReporter:
    """
    Per-job progress writer.

    Percent never decreases within a run and stays below 100 until
    ``complete``. Exactly one terminal event is published.
    """

    def __init__(self, job_id: str, store, channel):
        self.job_id = job_id
        self.store = store
        self.channel = channel
        self.percent = 0
        self.terminal_sent = False

    async def report(self, percent: float, message: Optional[str] = None, **fields):
        self.percent = max(self.percent, min(int(percent), 99))
        self.store.update_progress(self.job_id, self.percent)
        await self.channel.publish(
            self.job_id,
            ProgressEvent(type=EventType.PROGRESS, percent=self.percent, message=message, **fields),
        )

    async def message(self, message: str, **fields):
        """Publish a message without moving the percentage."""
        await self.channel.publish(
            self.job_id,
            ProgressEvent(type=EventType.PROGRESS, percent=self.percent, message=message, **fields),
        )

    def band(self, low: float, high: float, **fields):
        """Callback mapping a sub-operation's 0..100 into ``[low, high]``."""

        async def on_progress(percent: float, message: str = None):
            await self.report(remap(percent, low, high), message, **fields)

        return on_progress

    async def complete(self, message: str = "Completed!", data: Optional[dict] = None, **fields):
        if self.terminal_sent:
            return
        self.percent = 100
        self.terminal_sent = True
        await self.channel.publish(
            self.job_id,
            ProgressEvent(type=EventType.COMPLETED, percent=100, message=message, data=data, **fields),
        )

    async def fail(self, message: str, **fields):
        if self.terminal_sent:
            return
        self.terminal_sent = True
        await self.channel.publish(
            self.job_id,
            ProgressEvent(type=EventType.ERROR, percent=self.percent, message=message, **fields),
        )


def parse_event(payload: str) -> Optional[ProgressEvent]:
    """Decode a relayed payload, or None if it is not a progress event."""
    try:
        return ProgressEvent.model_validate(json.loads(payload))
    except (ValueError, TypeError):
        return None
