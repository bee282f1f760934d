from __future__ import annotations

import threading

from .models import FeedItem


class SequenceCursor:
    """
    _changes 流的位置：最近一次完整消费到的 seq。

    - 0 为“未设置”哨兵，需要走冷启动
    - 只在批次成功解析后更新，单调不减
    - 拉取在 worker 线程执行，读写统一经锁，外部巡检不会读到中间状态
    """

    def __init__(self, value: int = 0) -> None:
        if value < 0:
            raise ValueError(f"sequence must be non-negative, got {value}")
        self._lock = threading.Lock()
        self._value = value

    def load(self) -> int:
        with self._lock:
            return self._value

    def store(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"sequence must be non-negative, got {value}")
        with self._lock:
            self._value = value

    def advance(self, value: int) -> int:
        """写入新位置并返回旧值；新值小于当前值时保持不变。"""
        if value < 0:
            raise ValueError(f"sequence must be non-negative, got {value}")
        with self._lock:
            previous = self._value
            if value > previous:
                self._value = value
            return previous

    def is_unset(self) -> bool:
        return self.load() == 0


class ItemCursor:
    """RSS 窗口的位置：最近见过的一条 item（整体替换，锁保护）。"""

    def __init__(self, item: FeedItem | None = None) -> None:
        self._lock = threading.Lock()
        self._item = item

    def load(self) -> FeedItem | None:
        with self._lock:
            return self._item

    def store(self, item: FeedItem | None) -> None:
        with self._lock:
            self._item = item
