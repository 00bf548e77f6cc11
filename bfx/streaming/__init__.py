from .client import BitfinexWSClient
from .dispatcher import ConnectionState, Dispatcher
from .keys import ChannelType, SubscriptionKey
from .registry import ChannelRegistry, ChannelState, SubscriptionHandle
from .subscriptions import SubscriptionManager

__all__ = [
    "BitfinexWSClient",
    "ConnectionState",
    "Dispatcher",
    "ChannelType",
    "SubscriptionKey",
    "ChannelRegistry",
    "ChannelState",
    "SubscriptionHandle",
    "SubscriptionManager",
]
