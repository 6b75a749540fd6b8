"""Live change notifications pushed by the server."""

from groceries.live.channel import (
    ChannelState,
    ExponentialBackoff,
    LiveUpdateChannel,
    Subscription,
)

__all__ = [
    "ChannelState",
    "ExponentialBackoff",
    "LiveUpdateChannel",
    "Subscription",
]
