"""
npm follower (npmf)

跟随 npm registry 的两类上游 feed，并把新观察到的事件通过异步通道交给消费方：
- CouchDB 风格的 _changes 流（按 seq 续传，支持冷启动）
- registry RSS 窗口（按最近一条 item 截断去重）
"""

from .config import FollowerConfig
from .errors import (
    ColdStartError,
    EmptyFeedError,
    FetchError,
    FetchTimeoutError,
    FollowerError,
    InvalidSequenceError,
)
from .follower import ChangesFollower, Follower, FollowerState, RssFollower
from .models import ChangeEvent, FeedItem, Result, Revision

__all__ = [
    "ChangeEvent",
    "ChangesFollower",
    "ColdStartError",
    "EmptyFeedError",
    "FeedItem",
    "FetchError",
    "FetchTimeoutError",
    "Follower",
    "FollowerConfig",
    "FollowerError",
    "FollowerState",
    "InvalidSequenceError",
    "Result",
    "Revision",
    "RssFollower",
]
