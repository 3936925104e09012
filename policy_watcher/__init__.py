from policy_watcher._version import __version__
from policy_watcher.config import settings
from policy_watcher.exceptions import (
    NotConnectedError,
    PolicyWatcherException,
    ReceiveError,
    SendError,
    ShutdownError,
    TransportConnectionError,
    TransportError,
    UnsupportedEndpointScheme,
    WatcherClosedError,
    WatcherConnectionError,
)
from policy_watcher.log import setup_logger
from policy_watcher.transport import BaseTransport, MemoryTransport, RedisTransport, TransportFactory
from policy_watcher.watcher import Watcher, WatcherState, create_watcher

if settings.SETUP_LOGGING:
    setup_logger()

__all__ = [
    "BaseTransport",
    "MemoryTransport",
    "NotConnectedError",
    "PolicyWatcherException",
    "ReceiveError",
    "RedisTransport",
    "SendError",
    "ShutdownError",
    "TransportConnectionError",
    "TransportError",
    "TransportFactory",
    "UnsupportedEndpointScheme",
    "Watcher",
    "WatcherClosedError",
    "WatcherConnectionError",
    "WatcherState",
    "__version__",
    "create_watcher",
    "setup_logger",
]
