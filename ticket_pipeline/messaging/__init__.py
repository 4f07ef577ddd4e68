from .bus import BrokerConnection, ConnectionState, Delivery, RetryPolicy
from .supervisor import ConsumerSupervisor, KeepAliveScheduler

__all__ = [
    "BrokerConnection",
    "ConnectionState",
    "ConsumerSupervisor",
    "Delivery",
    "KeepAliveScheduler",
    "RetryPolicy",
]
