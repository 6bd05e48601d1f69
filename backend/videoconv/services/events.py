"""Broadcast channel for job events."""
import asyncio
import logging
from typing import List, Optional

from videoconv.schemas.events import JobEvent

logger = logging.getLogger(__name__)


class Subscription:
    """One subscriber's view of the channel.

    Registered as soon as it is created, so events published between
    ``subscribe()`` and the first ``async for`` step are not lost.
    """

    def __init__(self, broadcaster: "EventBroadcaster"):
        self._broadcaster = broadcaster
        self.queue: asyncio.Queue = asyncio.Queue()

    def __aiter__(self):
        return self

    async def __anext__(self) -> JobEvent:
        event = await self.queue.get()
        if event is None:
            self.close()
            raise StopAsyncIteration
        return event

    async def get(self, timeout: Optional[float] = None) -> JobEvent:
        return await asyncio.wait_for(self.__anext__(), timeout)

    def close(self) -> None:
        self._broadcaster._remove(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class EventBroadcaster:
    """Fan-out of job events to any number of subscribers.

    Each subscriber sees events published after it subscribed. There is no
    history replay.
    """

    def __init__(self):
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self._subscribers.append(sub)
        logger.debug(f"Event subscriber added ({len(self._subscribers)} active)")
        return sub

    def publish(self, event: JobEvent) -> None:
        for sub in list(self._subscribers):
            sub.queue.put_nowait(event)

    def close(self) -> None:
        """End every open subscription."""
        for sub in list(self._subscribers):
            sub.queue.put_nowait(None)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.debug(f"Event subscriber removed ({len(self._subscribers)} active)")
