import asyncio
from collections import defaultdict
from typing import Dict, Set
import logging

logger = logging.getLogger(__name__)

PROGRESS = "video:progress"
COMPLETE = "video:complete"
ERROR = "video:error"
SNAPSHOT = "video:snapshot"


def video_group(video_id: str) -> str:
    return f"video:{video_id}"


def user_group(user_id: str) -> str:
    return f"user:{user_id}"


class EventHub:
    """
    In-process notification channel: named groups of subscriber queues.
    Delivery is best-effort; a subscriber whose queue is full misses the event.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subs: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, key: str, queue: asyncio.Queue = None) -> asyncio.Queue:
        """Join a group; pass an existing queue to fan several groups into one subscriber"""
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
        self._subs[key].add(queue)
        return queue

    def unsubscribe(self, key: str, queue: asyncio.Queue) -> None:
        subs = self._subs.get(key)
        if subs and queue in subs:
            subs.remove(queue)
            if not subs:
                self._subs.pop(key, None)

    def subscriber_count(self, key: str) -> int:
        return len(self._subs.get(key, ()))

    async def publish(self, key: str, kind: str, payload: dict) -> None:
        event = {"event": kind, "data": payload}
        for queue in list(self._subs.get(key, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"Dropping {kind} for a slow subscriber of {key}")
