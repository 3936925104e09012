"""In-process broker for ``mem://<topic>`` endpoints (single process only)."""

import asyncio
from urllib.parse import urlparse

import structlog

from policy_watcher.exceptions import ReceiveError, SendError, ShutdownError, TransportConnectionError
from policy_watcher.transport.base import BaseTransport, Message, SubscriptionHandle, TopicHandle

LOG = structlog.get_logger()


def topic_name_from_endpoint(endpoint: str) -> str:
    parsed = urlparse(endpoint)
    return f"{parsed.netloc}{parsed.path}"


class MemoryTopic:
    """Broker-side topic. Every attached subscription gets its own copy of each message."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.subscriptions: list["MemorySubscriptionHandle"] = []

    def deliver(self, body: bytes) -> None:
        for subscription in list(self.subscriptions):
            subscription.enqueue(body)


class MemoryTopicHandle(TopicHandle):
    def __init__(self, topic: MemoryTopic) -> None:
        self._topic = topic
        self._closed = False

    async def send(self, body: bytes) -> None:
        if self._closed:
            raise SendError(f"Topic {self._topic.name} has been shut down")
        self._topic.deliver(bytes(body))

    async def shutdown(self) -> None:
        if self._closed:
            raise ShutdownError(f"Topic {self._topic.name} has already been shut down")
        self._closed = True


class MemorySubscriptionHandle(SubscriptionHandle):
    def __init__(self, topic: MemoryTopic) -> None:
        self._topic = topic
        # None is the shutdown sentinel that wakes a pending receive
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False
        self.delivered = 0
        self.acked = 0

    @property
    def unacked(self) -> int:
        return self.delivered - self.acked

    def enqueue(self, body: bytes) -> None:
        if self._closed:
            return
        self._queue.put_nowait(body)

    async def receive(self) -> Message:
        if self._closed:
            raise ReceiveError(f"Subscription to {self._topic.name} has been shut down")
        body = await self._queue.get()
        if body is None:
            raise ReceiveError(f"Subscription to {self._topic.name} has been shut down")
        self.delivered += 1
        return Message(body=body, _on_ack=self._record_ack)

    async def shutdown(self) -> None:
        if self._closed:
            raise ShutdownError(f"Subscription to {self._topic.name} has already been shut down")
        self._closed = True
        if self in self._topic.subscriptions:
            self._topic.subscriptions.remove(self)
        self._queue.put_nowait(None)

    def _record_ack(self) -> None:
        self.acked += 1


class MemoryTransport(BaseTransport):
    """Process-local topics keyed by the endpoint's host and path.

    Opening a topic creates it. A subscription may only be opened on a topic
    that has been opened before.
    """

    def __init__(self) -> None:
        self._topics: dict[str, MemoryTopic] = {}

    async def open_topic(self, endpoint: str) -> MemoryTopicHandle:
        name = topic_name_from_endpoint(endpoint)
        if not name:
            raise TransportConnectionError(endpoint, reason="memory endpoint has no topic name")
        topic = self._topics.get(name)
        if topic is None:
            topic = MemoryTopic(name)
            self._topics[name] = topic
            LOG.debug("Memory topic created", topic=name)
        return MemoryTopicHandle(topic)

    async def open_subscription(self, endpoint: str) -> MemorySubscriptionHandle:
        name = topic_name_from_endpoint(endpoint)
        topic = self._topics.get(name)
        if topic is None:
            raise TransportConnectionError(endpoint, reason=f"no topic {name!r} has been opened")
        subscription = MemorySubscriptionHandle(topic)
        topic.subscriptions.append(subscription)
        LOG.debug("Memory subscription opened", topic=name, subscriptions=len(topic.subscriptions))
        return subscription
