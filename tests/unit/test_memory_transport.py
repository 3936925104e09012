"""Tests for the in-process mem:// transport."""

import asyncio

import pytest

from policy_watcher.exceptions import ReceiveError, SendError, ShutdownError, TransportConnectionError
from policy_watcher.transport.memory import MemoryTransport, topic_name_from_endpoint


def test_topic_name_from_endpoint():
    assert topic_name_from_endpoint("mem://topic-1") == "topic-1"
    assert topic_name_from_endpoint("mem://policies/tenant-a") == "policies/tenant-a"
    assert topic_name_from_endpoint("mem://") == ""


@pytest.mark.asyncio
async def test_every_subscription_gets_its_own_copy():
    transport = MemoryTransport()
    topic = await transport.open_topic("mem://topic-1")
    sub_a = await transport.open_subscription("mem://topic-1")
    sub_b = await transport.open_subscription("mem://topic-1")

    await topic.send(b"changed")

    msg_a = await asyncio.wait_for(sub_a.receive(), timeout=1)
    msg_b = await asyncio.wait_for(sub_b.receive(), timeout=1)
    assert msg_a.body == b"changed"
    assert msg_b.body == b"changed"


@pytest.mark.asyncio
async def test_topics_are_isolated():
    transport = MemoryTransport()
    topic_a = await transport.open_topic("mem://topic-a")
    await transport.open_topic("mem://topic-b")
    sub_b = await transport.open_subscription("mem://topic-b")

    await topic_a.send(b"")

    receive = asyncio.create_task(sub_b.receive())
    await asyncio.sleep(0.05)
    assert not receive.done()
    receive.cancel()
    await asyncio.gather(receive, return_exceptions=True)


@pytest.mark.asyncio
async def test_subscription_requires_an_opened_topic():
    transport = MemoryTransport()
    with pytest.raises(TransportConnectionError):
        await transport.open_subscription("mem://never-opened")


@pytest.mark.asyncio
async def test_open_topic_without_name_fails():
    transport = MemoryTransport()
    with pytest.raises(TransportConnectionError):
        await transport.open_topic("mem://")


@pytest.mark.asyncio
async def test_ack_is_recorded_once():
    transport = MemoryTransport()
    topic = await transport.open_topic("mem://topic-1")
    subscription = await transport.open_subscription("mem://topic-1")
    await topic.send(b"")

    message = await asyncio.wait_for(subscription.receive(), timeout=1)
    assert subscription.unacked == 1

    message.ack()
    message.ack()
    assert message.acked
    assert subscription.acked == 1
    assert subscription.unacked == 0


@pytest.mark.asyncio
async def test_shutdown_wakes_pending_receive():
    transport = MemoryTransport()
    await transport.open_topic("mem://topic-1")
    subscription = await transport.open_subscription("mem://topic-1")

    receive = asyncio.create_task(subscription.receive())
    await asyncio.sleep(0)
    await subscription.shutdown()

    with pytest.raises(ReceiveError):
        await asyncio.wait_for(receive, timeout=1)


@pytest.mark.asyncio
async def test_shut_down_subscription_stops_receiving():
    transport = MemoryTransport()
    topic = await transport.open_topic("mem://topic-1")
    subscription = await transport.open_subscription("mem://topic-1")
    await subscription.shutdown()

    await topic.send(b"")

    with pytest.raises(ReceiveError):
        await subscription.receive()
    with pytest.raises(ShutdownError):
        await subscription.shutdown()


@pytest.mark.asyncio
async def test_send_after_topic_shutdown_fails():
    transport = MemoryTransport()
    topic = await transport.open_topic("mem://topic-1")
    await topic.shutdown()

    with pytest.raises(SendError):
        await topic.send(b"")
    with pytest.raises(ShutdownError):
        await topic.shutdown()
