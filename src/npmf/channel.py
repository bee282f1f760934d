from __future__ import annotations

import asyncio

from .errors import ChannelClosed
from .models import Result


DEFAULT_CAPACITY = 10

# 关闭标记：不占容量，消费方读到后即认为通道已关闭且已排空。
_CLOSED = object()


async def first_completed(*aws) -> set[asyncio.Future]:  # noqa: ANN002
    """并发等待多个唤醒源，返回先完成的集合，其余全部取消。"""
    futures = [asyncio.ensure_future(a) for a in aws]
    try:
        done, pending = await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        for f in futures:
            f.cancel()
        raise
    for f in pending:
        f.cancel()
    return done


class ResultChannel:
    """
    有界、有序、单生产者/单消费者的结果通道。

    背压策略：满时生产者阻塞而不丢弃，慢消费者会拖慢轮询但不会丢事件；
    唯一的退出方式是 stop 信号。

    关闭语义：close() 幂等；关闭前已入队的结果仍会被消费完，之后迭代结束。
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"channel capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._slots = asyncio.Semaphore(capacity)
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        n = self._queue.qsize()
        return n - 1 if self._closed and n else n

    async def send(self, result: Result, stop: asyncio.Event) -> bool:
        """
        投递一个结果。

        返回 False 表示 stop 已触发、本次投递被放弃（结果未入队）。
        """
        if self._closed:
            raise ChannelClosed("send on closed channel")
        if stop.is_set():
            return False

        if self._slots.locked():
            acquirer = asyncio.ensure_future(self._slots.acquire())
            done = await first_completed(acquirer, stop.wait())
            if acquirer not in done or acquirer.cancelled():
                # acquire 可能在 wait 返回后才完成，此时需归还名额
                if acquirer.done() and not acquirer.cancelled():
                    self._slots.release()
                return False
        else:
            await self._slots.acquire()

        if self._closed:
            self._slots.release()
            raise ChannelClosed("send on closed channel")
        self._queue.put_nowait(result)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def receive(self) -> Result:
        item = await self._queue.get()
        if item is _CLOSED:
            # 放回标记，后续 receive 同样立即得到“已关闭”。
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed("channel closed")
        self._slots.release()
        return item  # type: ignore[return-value]

    def __aiter__(self) -> ResultChannel:
        return self

    async def __anext__(self) -> Result:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration from None
