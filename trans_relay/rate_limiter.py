# trans_relay/rate_limiter.py
"""
本模块提供一个异步速率控制器，同时限制并发数与相邻请求的最小间隔。

后端调用在真正发出网络请求之前必须先获得许可（Permit）；
许可在任何退出路径上都会被归还。

控制器的状态由 `threading.Lock` 保护，不绑定任何事件循环：
多个线程各自运行的事件循环可以共享同一个控制器。等待者的 Future
属于它自己的事件循环，并通过 `call_soon_threadsafe` 被唤醒。
"""

import asyncio
import itertools
import threading
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from trans_relay.exceptions import RateLimitTimeoutError

logger = structlog.get_logger(__name__)

PacingScope = Literal["global", "backend"]
_GLOBAL_KEY = "__global__"


class RateLimitConfig(BaseModel):
    """速率控制配置模型。"""

    max_concurrency: int = Field(default=5, gt=0)
    min_delay: float = Field(default=1.0, ge=0, description="相邻请求的最小间隔（秒）")
    scope: PacingScope = "global"
    acquire_timeout: Optional[float] = Field(default=None, gt=0)


@dataclass
class Permit:
    """一次已获得的调用许可。"""

    permit_id: int
    key: str
    acquired_at: float
    released: bool = False


@dataclass(eq=False)
class _Waiter:
    future: "asyncio.Future[None]"
    granted: bool = False


def _wake(future: "asyncio.Future[None]") -> None:
    if not future.done():
        future.set_result(None)


class RateController:
    """线程安全、可跨事件循环使用的并发与节奏控制器。"""

    def __init__(
        self,
        max_concurrency: int = 5,
        min_delay: float = 1.0,
        scope: PacingScope = "global",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrency <= 0:
            raise ValueError("最大并发数必须为正数")
        if min_delay < 0:
            raise ValueError("最小间隔不能为负数")
        self._max_concurrency = max_concurrency
        self._min_delay = min_delay
        self.scope = scope
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak_in_flight = 0
        self._next_allowed_at: dict[str, float] = {}
        self._ids = itertools.count(1)
        self._waiters: deque[_Waiter] = deque()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> "RateController":
        return cls(
            max_concurrency=config.max_concurrency,
            min_delay=config.min_delay,
            scope=config.scope,
        )

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def min_delay(self) -> float:
        return self._min_delay

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    def _pacing_key(self, key: Optional[str]) -> str:
        if self.scope == "backend" and key:
            return key
        return _GLOBAL_KEY

    def set_max_concurrency(self, max_concurrency: int) -> None:
        """修改最大并发数，最小为 1。调高时立即唤醒排队中的等待者。"""
        with self._lock:
            self._max_concurrency = max(1, max_concurrency)
            self._grant_waiters_locked()
        logger.info("已设置最大并发请求数", max_concurrency=self._max_concurrency)

    def set_min_delay(self, min_delay: float) -> None:
        """修改最小请求间隔（秒），最小为 0。"""
        with self._lock:
            self._min_delay = max(0.0, min_delay)
        logger.info("已设置请求间隔", min_delay=self._min_delay)

    def _take_slot_locked(self) -> None:
        self._in_flight += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)

    def _grant_waiters_locked(self) -> None:
        # 按先来先得的顺序把空闲槽位转交给等待者
        while self._waiters and self._in_flight < self._max_concurrency:
            waiter = self._waiters.popleft()
            try:
                waiter.future.get_loop().call_soon_threadsafe(_wake, waiter.future)
            except RuntimeError:
                # 等待者所在的事件循环已经关闭，它永远不会再来取这个槽位
                continue
            waiter.granted = True
            self._take_slot_locked()

    def _release_slot(self) -> None:
        with self._lock:
            self._in_flight -= 1
            self._grant_waiters_locked()

    async def _acquire_slot(self) -> None:
        loop = asyncio.get_running_loop()
        with self._lock:
            if not self._waiters and self._in_flight < self._max_concurrency:
                self._take_slot_locked()
                return
            waiter = _Waiter(loop.create_future())
            self._waiters.append(waiter)

        try:
            await waiter.future
        except BaseException:
            with self._lock:
                granted = waiter.granted
                if not granted:
                    self._waiters.remove(waiter)
            # 槽位已经转交但等待者被取消了，交还给下一个等待者
            if granted:
                self._release_slot()
            raise

    def _reserve_pacing(self, pacing_key: str) -> float:
        with self._lock:
            now = self._clock()
            start_at = max(now, self._next_allowed_at.get(pacing_key, 0.0))
            self._next_allowed_at[pacing_key] = start_at + self._min_delay
        return start_at - now

    async def acquire(
        self, key: Optional[str] = None, timeout: Optional[float] = None
    ) -> Permit:
        """
        等待一个并发槽位，并等待到最小间隔窗口满足后返回许可。

        Args:
            key: 后端名称，仅在 scope="backend" 时用于分别计时。
            timeout: 等待槽位的最长时间（秒），超时抛出 RateLimitTimeoutError。

        """
        try:
            if timeout is None:
                await self._acquire_slot()
            else:
                await asyncio.wait_for(self._acquire_slot(), timeout)
        except asyncio.TimeoutError as e:
            raise RateLimitTimeoutError(f"等待并发槽位超时 ({timeout}s)") from e

        permit = Permit(
            permit_id=next(self._ids),
            key=self._pacing_key(key),
            acquired_at=self._clock(),
        )
        try:
            # 在锁内预约时间窗口，然后在锁外等待
            wait_time = self._reserve_pacing(permit.key)
            if wait_time > 0:
                await asyncio.sleep(wait_time)
        except BaseException:
            self.release(permit)
            raise
        return permit

    def release(self, permit: Permit) -> None:
        """归还许可。重复归还同一个许可是安全的空操作，可以在任意线程调用。"""
        with self._lock:
            if permit.released:
                return
            permit.released = True
        self._release_slot()

    @asynccontextmanager
    async def slot(
        self, key: Optional[str] = None, timeout: Optional[float] = None
    ) -> AsyncIterator[Permit]:
        """以作用域方式获取许可，保证在任何退出路径上归还。"""
        permit = await self.acquire(key, timeout=timeout)
        try:
            yield permit
        finally:
            self.release(permit)
