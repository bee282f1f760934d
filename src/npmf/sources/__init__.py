from .base import FeedSource, FetchOutcome
from .couch import REPLICATE_REGISTRY_URL, ChangesSource
from .rss import RSS_ENDPOINT_URL, RssSource, truncate_window

__all__ = [
    "FeedSource",
    "FetchOutcome",
    "ChangesSource",
    "RssSource",
    "REPLICATE_REGISTRY_URL",
    "RSS_ENDPOINT_URL",
    "truncate_window",
]
