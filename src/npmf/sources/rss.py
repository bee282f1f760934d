from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import feedparser

from ..cursor import ItemCursor
from ..errors import DecodeError, EmptyFeedError, FetchError, FollowerError, StatusError
from ..http_utils import HttpClient, HttpResponse, with_query_params
from ..models import FeedItem
from .base import FetchOutcome


logger = logging.getLogger(__name__)

RSS_ENDPOINT_URL = "https://registry.npmjs.org/-/rss"
DEFAULT_WINDOW_LIMIT = 50


def parse_feed(resp: HttpResponse) -> list[FeedItem]:
    """
    将 RSS 响应解析为按 feed 顺序（最新在前）排列的条目列表。

    feedparser 的映射：pubDate -> published（原始字符串），dc:creator -> author。
    """
    parsed = feedparser.parse(resp.body)
    entries = list(parsed.get("entries") or [])
    # 空窗口本身是合法文档（由调用方判定为 EmptyFeedError）；无法识别为 feed 才算解析失败
    if not entries and not parsed.get("version"):
        cause = parsed.get("bozo_exception") or "not a recognised feed document"
        body_prefix = resp.text()[:200]
        raise DecodeError(f"decoding body from {resp.url}: {cause}; body_prefix={body_prefix!r}")
    return [FeedItem.from_mapping(e) for e in entries]


def truncate_window(items: Sequence[FeedItem], latest: FeedItem | None) -> tuple[list[FeedItem], bool]:
    """
    计算降序窗口中严格新于 latest 的部分。

    返回 (new_items, matched)：
    - new_items：latest 之前的全部条目（仍为降序）；latest 为空或未命中时为整个窗口
    - matched：是否在窗口中找到了 latest
    """
    if latest is None:
        return list(items), False
    for idx, item in enumerate(items):
        if item.same_as(latest):
            return list(items[:idx]), True
    return list(items), False


@dataclass(slots=True)
class RssSource:
    """
    npm registry RSS（窗口 feed）：每次只返回最近 N 条，没有可续传的位置 token。

    cursor 语义：最近见过的一条 item（creator/title/pubDate 结构相等）。
    窗口内找不到 cursor 时（一个间隔内 feed 前进超过 N 条），保守地把整个窗口视为新条目，
    commit 时计入 window_overruns。
    """

    http: HttpClient
    url: str = RSS_ENDPOINT_URL
    limit: int = DEFAULT_WINDOW_LIMIT
    cursor: ItemCursor = field(default_factory=ItemCursor)
    window_overruns: int = 0

    def key(self) -> str:
        return f"rss:{self.url}"

    def position(self) -> FeedItem | None:
        return self.cursor.load()

    def needs_cold_start(self) -> bool:
        return False

    def cold_start(self) -> FetchOutcome:
        return FetchOutcome()

    def _window_url(self) -> str:
        # 始终按时间倒序请求
        return with_query_params(self.url, {"descending": "true", "limit": str(self.limit)})

    def fetch(self) -> FetchOutcome:
        latest = self.cursor.load()
        url = self._window_url()
        try:
            resp = self.http.get(url, headers={"Accept": "application/rss+xml, application/xml"})
            if resp.status != 200:
                raise StatusError(resp.status, resp.url)
            items = parse_feed(resp)
            if not items:
                raise EmptyFeedError()
        except FollowerError as e:
            raise FetchError(str(e), cursor=latest.identity() if latest else None) from e

        new_items, matched = truncate_window(items, latest)
        if not new_items:
            return FetchOutcome(since=latest)

        new_items.reverse()
        logger.debug("fetched %d new feed items: head=%r", len(new_items), items[0].identity())
        return FetchOutcome(
            items=new_items,
            position=items[0],
            since=latest,
            overrun=latest is not None and not matched,
        )

    def commit(self, outcome: FetchOutcome) -> None:
        if outcome.overrun:
            self.window_overruns += 1
            logger.warning(
                "cursor item not found in window: limit=%d cursor=%r overruns=%d; emitting whole window",
                self.limit,
                outcome.since.identity(),
                self.window_overruns,
            )
        if outcome.position is not None:
            self.cursor.store(outcome.position)
