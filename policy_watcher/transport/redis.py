"""Redis pub/sub transport for ``redis://`` and ``rediss://`` endpoints.

Endpoint format: ``redis://host:port/db?channel=<name>``. The ``channel`` query
parameter is stripped before the URL reaches redis-py; without it the channel
is ``settings.REDIS_DEFAULT_CHANNEL``. Redis pub/sub has no acknowledgement,
so ``Message.ack`` is a no-op here.
"""

from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from policy_watcher.config import settings
from policy_watcher.exceptions import ReceiveError, SendError, ShutdownError, TransportConnectionError
from policy_watcher.transport.base import BaseTransport, Message, SubscriptionHandle, TopicHandle

LOG = structlog.get_logger()


def parse_redis_endpoint(endpoint: str) -> tuple[str, str]:
    """Split an endpoint into the redis-py connection URL and the channel name."""
    parsed = urlparse(endpoint)
    query = parse_qs(parsed.query, keep_blank_values=True)
    channel = query.pop("channel", [""])[0] or settings.REDIS_DEFAULT_CHANNEL
    url = urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
    return url, channel


class RedisTopicHandle(TopicHandle):
    def __init__(self, client: Redis, channel: str, owns_client: bool) -> None:
        self._client = client
        self._channel = channel
        self._owns_client = owns_client
        self._closed = False

    async def send(self, body: bytes) -> None:
        if self._closed:
            raise SendError(f"Redis topic {self._channel} has been shut down")
        try:
            await self._client.publish(self._channel, body)
        except RedisError as e:
            raise SendError(f"Failed to publish to Redis channel {self._channel}: {e}") from e

    async def shutdown(self) -> None:
        if self._closed:
            raise ShutdownError(f"Redis topic {self._channel} has already been shut down")
        self._closed = True
        if not self._owns_client:
            return
        try:
            await self._client.aclose()
        except RedisError as e:
            raise ShutdownError(f"Failed to close Redis client for channel {self._channel}: {e}") from e


class RedisSubscriptionHandle(SubscriptionHandle):
    def __init__(self, client: Redis, pubsub: PubSub, channel: str, owns_client: bool) -> None:
        self._client = client
        self._pubsub = pubsub
        self._channel = channel
        self._owns_client = owns_client
        self._closed = False

    async def receive(self) -> Message:
        while True:
            if self._closed:
                raise ReceiveError(f"Redis subscription to {self._channel} has been shut down")
            try:
                raw_message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
            except RedisError as e:
                raise ReceiveError(f"Failed to receive from Redis channel {self._channel}: {e}") from e
            if raw_message is None or raw_message.get("type") != "message":
                continue
            data = raw_message["data"]
            if isinstance(data, str):
                data = data.encode()
            return Message(body=data)

    async def shutdown(self) -> None:
        if self._closed:
            raise ShutdownError(f"Redis subscription to {self._channel} has already been shut down")
        self._closed = True
        errors: list[str] = []
        try:
            await self._pubsub.unsubscribe(self._channel)
        except RedisError as e:
            errors.append(f"unsubscribe: {e}")
        try:
            await self._pubsub.aclose()
        except RedisError as e:
            errors.append(f"close pubsub: {e}")
        if self._owns_client:
            try:
                await self._client.aclose()
            except RedisError as e:
                errors.append(f"close client: {e}")
        if errors:
            raise ShutdownError(f"Redis subscription to {self._channel} shut down with errors: {'; '.join(errors)}")


class RedisTransport(BaseTransport):
    """Fan-out over one Redis PUBLISH/SUBSCRIBE channel per endpoint.

    An injected client is shared by all handles and left open on shutdown.
    Without one, each handle builds and owns a client from the endpoint URL.
    """

    def __init__(self, client: Redis | None = None) -> None:
        self._client = client

    def _client_for(self, url: str) -> tuple[Redis, bool]:
        if self._client is not None:
            return self._client, False
        return Redis.from_url(url), True

    async def open_topic(self, endpoint: str) -> RedisTopicHandle:
        url, channel = parse_redis_endpoint(endpoint)
        try:
            client, owns_client = self._client_for(url)
        except ValueError as e:
            raise TransportConnectionError(endpoint, reason=str(e)) from e
        try:
            await client.ping()
        except RedisError as e:
            if owns_client:
                await client.aclose()
            raise TransportConnectionError(endpoint, reason=str(e)) from e
        LOG.debug("Redis topic opened", channel=channel)
        return RedisTopicHandle(client, channel, owns_client)

    async def open_subscription(self, endpoint: str) -> RedisSubscriptionHandle:
        url, channel = parse_redis_endpoint(endpoint)
        try:
            client, owns_client = self._client_for(url)
        except ValueError as e:
            raise TransportConnectionError(endpoint, reason=str(e)) from e
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as e:
            try:
                await pubsub.aclose()
                if owns_client:
                    await client.aclose()
            except RedisError:
                LOG.warning("Error closing Redis pubsub after failed subscribe", channel=channel, exc_info=True)
            raise TransportConnectionError(endpoint, reason=str(e)) from e
        LOG.debug("Redis subscription opened", channel=channel)
        return RedisSubscriptionHandle(client, pubsub, channel, owns_client)
