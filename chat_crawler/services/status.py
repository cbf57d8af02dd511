# chat_crawler/services/status.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List

from chat_crawler.schemas import CrawlStatus

log = logging.getLogger(__name__)

Subscriber = Callable[[CrawlStatus], None]


@dataclass
class Delivery:
    delivered: int = 0
    failed: int = 0


class StatusBroadcaster:
    """Pushes crawl status to every subscriber and reports who got it."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 100):
        """Subscribe an asyncio.Queue; returns (queue, unsubscribe)."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        return queue, self.subscribe(queue.put_nowait)

    def publish(self, status: CrawlStatus) -> Delivery:
        delivery = Delivery()
        for callback in list(self._subscribers):
            try:
                callback(status)
                delivery.delivered += 1
            except Exception as e:
                delivery.failed += 1
                log.error("Status subscriber %r failed: %s", callback, e)
        return delivery
