import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

from policy_watcher.transport.base import BaseTransport, SubscriptionHandle, TopicHandle


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll *predicate* until it holds or *timeout* seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


async def block_forever(*args: object, **kwargs: object) -> None:
    """Side effect for a mocked transport call that never completes on its own."""
    await asyncio.Event().wait()


def make_mock_topic() -> AsyncMock:
    return AsyncMock(spec=TopicHandle)


def make_mock_subscription() -> AsyncMock:
    """A subscription whose receive() blocks until the listener is cancelled."""
    subscription = AsyncMock(spec=SubscriptionHandle)
    subscription.receive.side_effect = block_forever
    return subscription


def make_mock_transport(
    topic: AsyncMock | None = None,
    subscription: AsyncMock | None = None,
) -> MagicMock:
    transport = MagicMock(spec=BaseTransport)
    transport.open_topic = AsyncMock(return_value=topic or make_mock_topic())
    transport.open_subscription = AsyncMock(return_value=subscription or make_mock_subscription())
    return transport


class CallbackRecorder:
    """Async update callback that records every payload it is called with."""

    def __init__(self, name: str = "callback") -> None:
        self.name = name
        self.payloads: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.payloads)

    async def __call__(self, payload: str) -> None:
        self.payloads.append(payload)
