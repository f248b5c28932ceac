"""Live feed reconciliation for the OddsFlow Radar Telegram Mini App."""

from oddsflow.entities import CancelToken, Composer, FeedRow, FeedSpec, Sender
from oddsflow.feed_store import FeedStore
from oddsflow.feeds import FEEDS, get_feed
from oddsflow.live_feed import LiveFeed

__all__ = [
    "CancelToken",
    "Composer",
    "FEEDS",
    "FeedRow",
    "FeedSpec",
    "FeedStore",
    "LiveFeed",
    "Sender",
    "get_feed",
]
