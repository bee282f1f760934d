from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..cursor import SequenceCursor
from ..errors import (
    ColdStartError,
    DecodeError,
    FetchError,
    FollowerError,
    InvalidSequenceError,
    StatusError,
)
from ..http_utils import HttpClient, HttpResponse, with_query_params
from ..models import ChangesBatch
from .base import FetchOutcome


logger = logging.getLogger(__name__)

REPLICATE_REGISTRY_URL = "https://replicate.npmjs.com/registry/"


def _decode_json(resp: HttpResponse) -> object:
    try:
        return resp.json()
    except (UnicodeDecodeError, ValueError) as e:
        body_prefix = resp.text()[:200]
        raise DecodeError(f"decoding body from {resp.url}: {e}; body_prefix={body_prefix!r}") from e


@dataclass(slots=True)
class ChangesSource:
    """
    CouchDB 风格 _changes 流（npm replicate）。

    cursor 语义：last_seq（uint，0 表示未设置）
    - 冷启动：GET <base>/ 读取 update_seq 作为起点
    - 拉取：GET <base>/_changes?since=<cursor>，整批解析成功后给出 last_seq
    - commit：推进到 last_seq（只增不减），由 follower 在采纳结果后调用
    """

    http: HttpClient
    base_url: str = REPLICATE_REGISTRY_URL
    cursor: SequenceCursor = field(default_factory=SequenceCursor)

    def key(self) -> str:
        return f"couch:{self.base_url}"

    def position(self) -> int:
        return self.cursor.load()

    def needs_cold_start(self) -> bool:
        return self.cursor.is_unset()

    def _changes_url(self) -> str:
        base = self.base_url if self.base_url.endswith("/") else self.base_url + "/"
        return base + "_changes"

    def cold_start(self) -> FetchOutcome:
        since = self.cursor.load()
        try:
            resp = self.http.get(self.base_url, headers={"Accept": "application/json"})
            if resp.status != 200:
                raise StatusError(resp.status, resp.url)
            body = _decode_json(resp)
            if not isinstance(body, dict):
                raise DecodeError(f"decoding body from {resp.url}: expected object, got {type(body).__name__}")
            update_seq = body.get("update_seq")
            if update_seq is None or update_seq == 0:
                raise InvalidSequenceError()
            if isinstance(update_seq, bool) or not isinstance(update_seq, int) or update_seq < 0:
                raise DecodeError(f"decoding body from {resp.url}: invalid update_seq {update_seq!r}")
        except FollowerError as e:
            raise ColdStartError(str(e), cursor=since) from e

        return FetchOutcome(position=update_seq, since=since)

    def fetch(self) -> FetchOutcome:
        since = self.cursor.load()
        url = with_query_params(self._changes_url(), {"since": str(since)})
        try:
            resp = self.http.get(url, headers={"Accept": "application/json"})
            if resp.status != 200:
                raise StatusError(resp.status, resp.url)
            batch = ChangesBatch.from_json(_decode_json(resp))
        except FollowerError as e:
            raise FetchError(str(e), cursor=since) from e

        logger.debug("fetched %d changes: since=%d last_seq=%d", len(batch.results), since, batch.last_seq)
        return FetchOutcome(items=list(batch.results), position=batch.last_seq, since=since)

    def commit(self, outcome: FetchOutcome) -> None:
        if outcome.position is None:
            return
        previous = self.cursor.advance(outcome.position)
        if previous == 0:
            logger.info("cold start: set sequence to %d", outcome.position)
        elif outcome.position < previous:
            logger.warning(
                "last_seq went backwards: cursor=%d last_seq=%d since=%r; keeping cursor",
                previous,
                outcome.position,
                outcome.since,
            )
