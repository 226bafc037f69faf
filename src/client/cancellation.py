"""取消令牌：贯穿请求、流读取与回合间等待的每一个挂起点。"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from src.client.errors import TurnCancelled

T = TypeVar("T")


class CancellationToken:
    """基于 asyncio.Event 的一次性取消标记；reset() 后可复用于下一个发送周期。"""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event = asyncio.Event()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled()

    async def run(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """等待 awaitable，与取消信号竞争；先取消则抛 TurnCancelled，超时抛 asyncio.TimeoutError。"""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TurnCancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        await _discard(task)
        if waiter in done:
            raise TurnCancelled()
        raise asyncio.TimeoutError()

    async def sleep(self, seconds: float) -> None:
        """可被取消打断的 sleep。"""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise TurnCancelled()


async def _discard(task: asyncio.Future) -> None:
    """取消并等待任务结束，使其持有的连接等资源被释放。"""
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()
