from urllib.parse import urlparse

from policy_watcher.exceptions import UnsupportedEndpointScheme
from policy_watcher.transport.base import BaseTransport
from policy_watcher.transport.memory import MemoryTransport
from policy_watcher.transport.redis import RedisTransport


def _default_transports() -> dict[str, BaseTransport]:
    redis_transport = RedisTransport()
    return {
        "mem": MemoryTransport(),
        "redis": redis_transport,
        "rediss": redis_transport,
    }


class TransportFactory:
    """Resolves an endpoint's URL scheme to the transport that serves it."""

    __transports: dict[str, BaseTransport] = _default_transports()

    @staticmethod
    def register(scheme: str, transport: BaseTransport) -> None:
        TransportFactory.__transports[scheme.lower()] = transport

    @staticmethod
    def reset() -> None:
        TransportFactory.__transports = _default_transports()

    @staticmethod
    def get_transport(endpoint: str) -> BaseTransport:
        scheme = urlparse(endpoint).scheme.lower()
        transport = TransportFactory.__transports.get(scheme)
        if transport is None:
            raise UnsupportedEndpointScheme(endpoint, scheme=scheme or None)
        return transport
