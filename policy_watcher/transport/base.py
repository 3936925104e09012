"""Abstract pub/sub transport the watcher talks to.

A transport resolves an endpoint descriptor into a topic handle (publish side)
and a subscription handle (receive side). Cancelling the task blocked in
``SubscriptionHandle.receive`` is the cancel signal.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class Message:
    body: bytes
    _on_ack: Callable[[], None] | None = field(default=None, repr=False, compare=False)
    acked: bool = field(default=False, compare=False)

    def ack(self) -> None:
        """Acknowledge receipt so the broker does not redeliver. Idempotent."""
        if self.acked:
            return
        self.acked = True
        if self._on_ack is not None:
            self._on_ack()


class TopicHandle(ABC):
    @abstractmethod
    async def send(self, body: bytes) -> None: ...

    @abstractmethod
    async def shutdown(self) -> None: ...


class SubscriptionHandle(ABC):
    @abstractmethod
    async def receive(self) -> Message: ...

    @abstractmethod
    async def shutdown(self) -> None: ...


class BaseTransport(ABC):
    """Opens both sides of a topic named by an endpoint descriptor.

    Implementations raise ``TransportConnectionError`` when a side cannot be
    opened, ``SendError`` / ``ReceiveError`` / ``ShutdownError`` from the
    handles.
    """

    @abstractmethod
    async def open_topic(self, endpoint: str) -> TopicHandle: ...

    @abstractmethod
    async def open_subscription(self, endpoint: str) -> SubscriptionHandle: ...
