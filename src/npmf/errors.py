from __future__ import annotations


class FollowerError(Exception):
    """
    所有 follower 相关错误的基类。

    分类（与轮询链路的失败点一一对应）：
    - SetupError：请求无法构造（URL 非法等），实际运行中不应出现
    - TransportError：网络/连接/超时失败，单次尝试失败，不终止轮询
    - StatusError：上游返回非 200
    - DecodeError：响应体无法解析
    - InvalidSequenceError / EmptyFeedError：语义错误，需能被调用方单独识别
    """


class SetupError(FollowerError):
    pass


class TransportError(FollowerError):
    pass


class StatusError(FollowerError):
    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"unexpected status {status} from {url}")
        self.status = status
        self.url = url


class DecodeError(FollowerError):
    pass


class InvalidSequenceError(FollowerError):
    """冷启动拿到的 update_seq 为 0（0 保留为“未设置”哨兵值）。"""

    def __init__(self, message: str = "invalid update sequence") -> None:
        super().__init__(message)


class EmptyFeedError(FollowerError):
    """RSS 窗口返回 0 条：与上游故障无法区分，必须上报而不是当作“无更新”。"""

    def __init__(self, message: str = "feed responded with 0 items") -> None:
        super().__init__(message)


class PhaseError(FollowerError):
    """
    带上下文的包装错误：记录失败阶段与失败时的 cursor，原因通过 __cause__ 链接。

    消费方无需了解内部状态即可区分冷启动失败 / 稳态拉取失败 / 解析失败。
    """

    phase: str = "unknown"

    def __init__(self, message: str, *, cursor: object = None) -> None:
        super().__init__(f"{self.phase}: cursor {cursor!r}: {message}")
        self.cursor = cursor

    def caused_by(self, exc_type: type[BaseException]) -> bool:
        err: BaseException | None = self.__cause__
        while err is not None:
            if isinstance(err, exc_type):
                return True
            err = err.__cause__
        return False


class ColdStartError(PhaseError):
    phase = "cold_start"


class FetchError(PhaseError):
    phase = "fetch"


class FetchTimeoutError(FetchError):
    pass


class ChannelClosed(FollowerError):
    pass
