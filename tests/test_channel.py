import asyncio

import pytest

from npmf.channel import ResultChannel
from npmf.errors import ChannelClosed
from npmf.models import FeedItem, Result


def _result(n: int) -> Result:
    return Result.ok(FeedItem(title=f"pkg-{n}", link="", pub_date=str(n), creator="u"))


def test_fifo_and_buffered_items_survive_close() -> None:
    async def run() -> list[str]:
        ch = ResultChannel(capacity=3)
        stop = asyncio.Event()
        for n in range(3):
            assert await ch.send(_result(n), stop)
        ch.close()
        ch.close()
        return [r.item.title async for r in ch]

    assert asyncio.run(run()) == ["pkg-0", "pkg-1", "pkg-2"]


def test_send_after_close_raises() -> None:
    async def run() -> None:
        ch = ResultChannel()
        ch.close()
        with pytest.raises(ChannelClosed):
            await ch.send(_result(0), asyncio.Event())
        with pytest.raises(ChannelClosed):
            await ch.receive()

    asyncio.run(run())


def test_send_abandoned_when_stop_already_set() -> None:
    async def run() -> int:
        ch = ResultChannel()
        stop = asyncio.Event()
        stop.set()
        assert await ch.send(_result(0), stop) is False
        return ch.qsize()

    assert asyncio.run(run()) == 0


def test_full_channel_blocks_until_consumer_reads() -> None:
    async def run() -> list[str]:
        ch = ResultChannel(capacity=1)
        stop = asyncio.Event()
        await ch.send(_result(0), stop)
        blocked = asyncio.ensure_future(ch.send(_result(1), stop))
        await asyncio.sleep(0.02)
        assert not blocked.done()
        first = await ch.receive()
        assert await asyncio.wait_for(blocked, 1.0) is True
        second = await ch.receive()
        return [first.item.title, second.item.title]

    assert asyncio.run(run()) == ["pkg-0", "pkg-1"]


def test_full_channel_send_observes_stop() -> None:
    async def run() -> tuple[bool, int]:
        ch = ResultChannel(capacity=1)
        stop = asyncio.Event()
        await ch.send(_result(0), stop)
        blocked = asyncio.ensure_future(ch.send(_result(1), stop))
        await asyncio.sleep(0.02)
        stop.set()
        sent = await asyncio.wait_for(blocked, 1.0)
        return sent, ch.qsize()

    assert asyncio.run(run()) == (False, 1)


def test_receive_wakes_on_close() -> None:
    async def run() -> list[Result]:
        ch = ResultChannel()
        consumer = asyncio.ensure_future(_drain(ch))
        await asyncio.sleep(0.01)
        ch.close()
        return await asyncio.wait_for(consumer, 1.0)

    assert asyncio.run(run()) == []


async def _drain(ch: ResultChannel) -> list[Result]:
    return [r async for r in ch]


def test_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        ResultChannel(capacity=0)
