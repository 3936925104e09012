from policy_watcher.transport.base import BaseTransport, Message, SubscriptionHandle, TopicHandle
from policy_watcher.transport.factory import TransportFactory
from policy_watcher.transport.memory import MemoryTransport
from policy_watcher.transport.redis import RedisTransport

__all__ = [
    "BaseTransport",
    "Message",
    "MemoryTransport",
    "RedisTransport",
    "SubscriptionHandle",
    "TopicHandle",
    "TransportFactory",
]
