from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass

from .channel import ResultChannel, first_completed
from .config import FollowerConfig
from .cursor import ItemCursor, SequenceCursor
from .errors import ColdStartError, FetchError, FetchTimeoutError, PhaseError
from .http_utils import HttpClient
from .models import FeedItem, Result
from .sources.base import FeedSource, FetchOutcome
from .sources.couch import ChangesSource
from .sources.rss import RssSource


logger = logging.getLogger(__name__)


class FollowerState(enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass(slots=True)
class FollowerStats:
    polls: int = 0
    fetch_errors: int = 0
    items_emitted: int = 0
    last_poll_duration_ms: int = 0


class _Stopped(Exception):
    pass


async def _sleep_or_stop(stop: asyncio.Event, seconds: float) -> bool:
    """等待计时器或 stop，先到者胜；返回 True 表示 stop 已触发。"""
    if stop.is_set():
        return True
    if seconds <= 0:
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except TimeoutError:
        return False
    return True


class Follower:
    """
    轮询调度器：固定间隔调用 source.fetch()，把结果按序写入有界通道。

    状态机：IDLE -> INITIALIZING -> RUNNING -> DRAINING -> CLOSED
    - INITIALIZING：需要时执行冷启动；失败则投递唯一一个错误结果后直接关闭
    - RUNNING：进入后立即拉取一次，然后按固定间隔 tick；单次拉取受 fetch_timeout_seconds 约束
    - 拉取失败只投递一个错误结果，循环继续（是否放弃由调用方决定）
    - stop 触发后在最近的挂起点退出，通道只关闭一次，此后不再投递
    """

    def __init__(self, source: FeedSource, config: FollowerConfig) -> None:
        self.source = source
        self.config = config
        self.stats = FollowerStats()
        self._state = FollowerState.IDLE
        self._task: asyncio.Task[None] | None = None
        # 最近一次 worker 调用的完成标记；超时或 stop 放弃后线程可能仍在运行
        self._worker_idle: threading.Event | None = None

    @property
    def state(self) -> FollowerState:
        return self._state

    def connect(self, stop: asyncio.Event | None = None) -> ResultChannel:
        """
        开始轮询并立即返回结果通道（需在运行中的事件循环内调用）。

        通道关闭是唯一的结束信号：stop 触发与冷启动失败不做区分，调用方可自行检查 stop。
        """
        if stop is None:
            stop = asyncio.Event()
        out = ResultChannel(self.config.channel_capacity)
        self._task = asyncio.get_running_loop().create_task(self._run(out, stop), name=f"follower:{self.source.key()}")
        return out

    async def _run(self, out: ResultChannel, stop: asyncio.Event) -> None:
        try:
            if self.source.needs_cold_start():
                self._state = FollowerState.INITIALIZING
                if not await self._cold_start(out, stop):
                    return

            self._state = FollowerState.RUNNING
            loop = asyncio.get_running_loop()
            interval = self.config.poll_interval_seconds
            if not await self._tick(out, stop):
                return
            next_tick = loop.time() + interval
            while True:
                if await _sleep_or_stop(stop, next_tick - loop.time()):
                    return
                # 与 ticker 一致：拉取慢于间隔时，错过的 tick 合并为一次
                next_tick = max(next_tick + interval, loop.time())
                if not await self._tick(out, stop):
                    return
        finally:
            self._state = FollowerState.DRAINING
            out.close()
            self._state = FollowerState.CLOSED
            logger.debug("follower closed: source=%s cursor=%r", self.source.key(), self.source.position())

    async def _cold_start(self, out: ResultChannel, stop: asyncio.Event) -> bool:
        try:
            outcome: FetchOutcome = await self._call_in_thread(
                self.source.cold_start, stop, timeout_error=ColdStartError
            )
        except _Stopped:
            return False
        except Exception as e:  # noqa: BLE001
            err = e if isinstance(e, ColdStartError) else self._wrap(ColdStartError, e)
            logger.error("cold start failed: source=%s error=%s", self.source.key(), err)
            await out.send(Result.failed(err), stop)
            return False
        self.source.commit(outcome)
        return True

    async def _tick(self, out: ResultChannel, stop: asyncio.Event) -> bool:
        """执行一次拉取并投递；返回 False 表示应退出循环。"""
        self.stats.polls += 1
        start_t = time.monotonic()
        try:
            outcome: FetchOutcome = await self._call_in_thread(
                self.source.fetch, stop, timeout_error=FetchTimeoutError
            )
        except _Stopped:
            return False
        except Exception as e:  # noqa: BLE001
            self.stats.fetch_errors += 1
            err = e if isinstance(e, FetchError) else self._wrap(FetchError, e)
            logger.warning("fetch failed: source=%s error=%s", self.source.key(), err)
            return await out.send(Result.failed(err), stop)
        finally:
            self.stats.last_poll_duration_ms = int((time.monotonic() - start_t) * 1000)

        # 只有被采纳的结果才推进 cursor
        self.source.commit(outcome)
        for item in outcome.items:
            if not await out.send(Result.ok(item), stop):
                return False
            self.stats.items_emitted += 1
        return True

    async def _call_in_thread(self, fn, stop: asyncio.Event, *, timeout_error: type[PhaseError]):  # noqa: ANN001, ANN202
        """
        在 worker 线程执行阻塞调用，同时等待 stop 与硬超时。

        已在途的请求不会被强制中断：超时或 stop 先到时结果直接丢弃（不会 commit），
        下一次调用会先等该线程结束，保证同一时刻只有一个 worker 访问 source。
        """
        if stop.is_set():
            raise _Stopped
        await self._wait_worker_idle(stop)

        idle = threading.Event()
        self._worker_idle = idle

        def run():  # noqa: ANN202
            try:
                return fn()
            finally:
                idle.set()

        timeout = self.config.fetch_timeout_seconds
        call = asyncio.ensure_future(asyncio.wait_for(asyncio.to_thread(run), timeout=timeout))
        done = await first_completed(call, stop.wait())
        if call not in done:
            raise _Stopped
        try:
            return call.result()
        except TimeoutError as e:
            raise self._wrap(timeout_error, e, f"exceeded {timeout:g}s timeout") from e

    async def _wait_worker_idle(self, stop: asyncio.Event) -> None:
        idle = self._worker_idle
        if idle is None or idle.is_set():
            return
        logger.warning("previous call still running: source=%s; waiting for it to finish", self.source.key())
        waiter = asyncio.ensure_future(asyncio.to_thread(idle.wait))
        done = await first_completed(waiter, stop.wait())
        if waiter not in done:
            raise _Stopped

    def _wrap(self, error_type: type[PhaseError], cause: BaseException, message: str | None = None) -> PhaseError:
        err = error_type(message or f"{type(cause).__name__}: {cause}", cursor=self.source.position())
        err.__cause__ = cause
        return err


class ChangesFollower(Follower):
    """
    跟随 npm replicate 的 _changes 流。

    config.since 为空或 0 时，首次 connect 会先冷启动到当前最新 seq。
    """

    def __init__(self, config: FollowerConfig | None = None, *, http: HttpClient | None = None) -> None:
        config = config or FollowerConfig()
        http = http or HttpClient(timeout_seconds=config.request_timeout_seconds, user_agent=config.user_agent)
        source = ChangesSource(
            http=http,
            base_url=config.registry_url,
            cursor=SequenceCursor(config.since or 0),
        )
        super().__init__(source, config)

    @property
    def sequence(self) -> int:
        return self.source.cursor.load()


class RssFollower(Follower):
    """跟随 npm registry 的 RSS 窗口，按时间正序投递新条目。"""

    def __init__(self, config: FollowerConfig | None = None, *, http: HttpClient | None = None) -> None:
        config = config or FollowerConfig()
        http = http or HttpClient(timeout_seconds=config.request_timeout_seconds, user_agent=config.user_agent)
        source = RssSource(http=http, url=config.rss_url, limit=config.limit, cursor=ItemCursor())
        super().__init__(source, config)

    @property
    def latest(self) -> FeedItem | None:
        return self.source.cursor.load()

    @property
    def window_overruns(self) -> int:
        return self.source.window_overruns
