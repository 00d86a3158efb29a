from chatcore.realtime.dispatcher import RealtimeDispatcher
from chatcore.realtime.feed import FeedFilter, FeedHub, FeedSubscription
from chatcore.realtime.publisher import RealtimePublisher

__all__ = [
    "FeedFilter",
    "FeedHub",
    "FeedSubscription",
    "RealtimeDispatcher",
    "RealtimePublisher",
]
