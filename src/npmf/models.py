from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Union

from .errors import DecodeError


def parse_rfc1123_datetime(value: str) -> datetime:
    """
    解析 RSS pubDate 使用的 RFC1123 时间串为带 tzinfo 的 datetime。

    兼容：
    - Sun, 21 Dec 2025 03:07:25 GMT
    - Sun, 21 Dec 2025 03:07:25 +0000
    """
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid RFC1123 datetime: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class Revision:
    rev: str


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """
    _changes 流中的一条文档变更通知。

    - seq：feed 内的序号
    - changes：至少一个 revision（同一事件可能报告多个并发 revision）
    - deleted 与 changes 相互独立
    """

    seq: int
    id: str
    changes: tuple[Revision, ...]
    deleted: bool = False

    @classmethod
    def from_json(cls, obj: Any) -> ChangeEvent:
        if not isinstance(obj, dict):
            raise DecodeError(f"change event: expected object, got {type(obj).__name__}")
        seq = obj.get("seq")
        if not _is_int(seq):
            raise DecodeError(f"change event: invalid seq {seq!r}")
        doc_id = obj.get("id")
        if not isinstance(doc_id, str):
            raise DecodeError(f"change event seq={seq}: invalid id {doc_id!r}")
        raw_changes = obj.get("changes")
        if not isinstance(raw_changes, list) or not raw_changes:
            raise DecodeError(f"change event {doc_id!r}: changes must be a non-empty list")
        revisions: list[Revision] = []
        for c in raw_changes:
            rev = c.get("rev") if isinstance(c, dict) else None
            if not isinstance(rev, str):
                raise DecodeError(f"change event {doc_id!r}: invalid revision {c!r}")
            revisions.append(Revision(rev=rev))
        deleted = obj.get("deleted", False)
        if not isinstance(deleted, bool):
            raise DecodeError(f"change event {doc_id!r}: invalid deleted flag {deleted!r}")
        return cls(seq=seq, id=doc_id, changes=tuple(revisions), deleted=deleted)

    def has_revision(self, rev: str) -> bool:
        return any(c.rev == rev for c in self.changes)

    def latest_revision(self) -> str:
        return self.changes[0].rev

    def to_json_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "seq": self.seq,
            "id": self.id,
            "changes": [{"rev": c.rev} for c in self.changes],
        }
        if self.deleted:
            d["deleted"] = True
        return d


@dataclass(frozen=True, slots=True)
class ChangesBatch:
    results: list[ChangeEvent]
    last_seq: int

    @classmethod
    def from_json(cls, obj: Any) -> ChangesBatch:
        if not isinstance(obj, dict):
            raise DecodeError(f"changes response: expected object, got {type(obj).__name__}")
        raw_results = obj.get("results")
        if raw_results is None:
            raw_results = []
        if not isinstance(raw_results, list):
            raise DecodeError(f"changes response: results must be a list, got {type(raw_results).__name__}")
        last_seq = obj.get("last_seq")
        if not _is_int(last_seq) or last_seq < 0:
            raise DecodeError(f"changes response: invalid last_seq {last_seq!r}")
        return cls(results=[ChangeEvent.from_json(r) for r in raw_results], last_seq=last_seq)


@dataclass(frozen=True, slots=True)
class FeedItem:
    """
    RSS 窗口中的一条发布记录。

    相等性只由 creator/title/pub_date 原始字符串决定（link 不参与）：
    原始 pubDate 串是唯一能在上游编码中稳定往返的值，不能用解析后的时间替代。
    """

    title: str
    link: str = field(compare=False)
    pub_date: str
    creator: str

    def identity(self) -> tuple[str, str, str]:
        return (self.creator, self.title, self.pub_date)

    def same_as(self, other: FeedItem | None) -> bool:
        if other is None:
            return False
        return self.identity() == other.identity()

    def published_at(self) -> datetime:
        return parse_rfc1123_datetime(self.pub_date)

    def __str__(self) -> str:
        return f"{self.title} updated by {self.creator} - the `latest` dist-tag was released on {self.pub_date}"

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "link": self.link,
            "pub_date": self.pub_date,
            "creator": self.creator,
        }

    @classmethod
    def from_mapping(cls, entry: Mapping[str, Any]) -> FeedItem:
        return cls(
            title=str(entry.get("title") or ""),
            link=str(entry.get("link") or ""),
            pub_date=str(entry.get("published") or ""),
            creator=str(entry.get("author") or ""),
        )


FollowedItem = Union[ChangeEvent, FeedItem]


@dataclass(frozen=True, slots=True)
class Result:
    """
    通过 channel 投递给消费方的最小单元：item 与 error 有且仅有一个。
    """

    item: FollowedItem | None = None
    error: BaseException | None = None

    def __post_init__(self) -> None:
        if (self.item is None) == (self.error is None):
            raise ValueError("Result must carry exactly one of item or error")

    @classmethod
    def ok(cls, item: FollowedItem) -> Result:
        return cls(item=item)

    @classmethod
    def failed(cls, error: BaseException) -> Result:
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None
