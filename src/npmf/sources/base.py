from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models import FollowedItem


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """
    一次往返的解码结果，尚未生效。

    - items：按投递顺序排列的新条目
    - position：commit 后的新 cursor；None 表示保持不变
    - since：发起请求时的 cursor
    - overrun：窗口内没有找到 since（仅 RSS）
    """

    items: list[FollowedItem] = field(default_factory=list)
    position: Any = None
    since: Any = None
    overrun: bool = False


class FeedSource(Protocol):
    """
    上游 feed 适配器接口：一次有界的往返，返回“自 cursor 以来”的新条目。

    约定：
    - cold_start()/fetch() 在 worker 线程中执行，只读 cursor、不写 cursor；失败抛 PhaseError（附带当时的 cursor）
    - commit() 由 follower 在事件循环中调用，且只针对被采纳的结果（未超时、未被 stop 放弃）
    - 失败或被放弃的往返不推进 cursor，下一次 tick 会重试同一窗口
    - needs_cold_start() 为 True 时，follower 在进入轮询前调用 cold_start()
    """

    def key(self) -> str: ...

    def position(self) -> object: ...

    def needs_cold_start(self) -> bool: ...

    def cold_start(self) -> FetchOutcome: ...

    def fetch(self) -> FetchOutcome: ...

    def commit(self, outcome: FetchOutcome) -> None: ...
