# trans_relay/dispatcher.py
"""
本模块包含 Trans-Relay 的调度器：把过滤链、缓存、速率控制器与后端注册表
串联成一条线性的翻译流水线。

    接收 -> 被过滤 | 命中缓存 | 派发 -> 后端成功 | 后端失败 -> 完成

任何失败都会在调度器边界被转换为 `success=False` 的结果，调用方永远不会
收到异常；原文始终保留在结果中，便于上层直接回退显示。

协程调用方使用 `translate` / `translate_async`；没有事件循环的普通线程使用
`translate_sync` / `submit`，它们把请求交给调度器自己的后台事件循环线程。
"""

import asyncio
import concurrent.futures
import threading
from collections import Counter
from typing import Any, Callable, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from trans_relay.backends.base import BaseBackend
from trans_relay.cache import CacheKey, TranslationCache
from trans_relay.config import TransRelaySettings
from trans_relay.exceptions import (
    BackendNotFoundError,
    CacheInconsistencyError,
    RateLimitTimeoutError,
)
from trans_relay.filters import BaseFilter, FilterChain
from trans_relay.rate_limiter import RateController
from trans_relay.registry import BackendRegistry, build_backend
from trans_relay.types import (
    EngineError,
    EngineStatistics,
    ErrorKind,
    TranslationRequest,
    TranslationResult,
)
from trans_relay.utils import AUTO_LANG

logger = structlog.get_logger(__name__)

ResultCallback = Callable[[TranslationResult], Any]
_PendingResult = Union[
    "asyncio.Task[TranslationResult]", "concurrent.futures.Future[TranslationResult]"
]

# 缓存条目数达到容量的该比例时给出清理建议
CACHE_FULL_RATIO = 0.9


class Dispatcher:
    """
    翻译调度器。每个实例持有自己的注册表、过滤链、缓存与速率控制器。

    同一个实例可以被多个线程、多个事件循环同时使用。相同请求的合并
    只发生在同一个事件循环之内。
    """

    def __init__(
        self,
        registry: Optional[BackendRegistry] = None,
        filters: Optional[FilterChain] = None,
        cache: Optional[TranslationCache] = None,
        rate_controller: Optional[RateController] = None,
        *,
        enabled: bool = True,
        default_source_lang: str = AUTO_LANG,
        default_target_lang: str = "zh",
        request_timeout: Optional[float] = 30.0,
        acquire_timeout: Optional[float] = None,
        coalesce_inflight: bool = True,
    ):
        self.registry = registry if registry is not None else BackendRegistry()
        self.filters = filters if filters is not None else FilterChain.default()
        self.cache = cache if cache is not None else TranslationCache()
        self.rate_controller = (
            rate_controller if rate_controller is not None else RateController()
        )
        self.enabled = enabled
        self.default_source_lang = default_source_lang
        self.default_target_lang = default_target_lang
        self.request_timeout = request_timeout
        self.acquire_timeout = acquire_timeout
        self.coalesce_inflight = coalesce_inflight
        self.initialized = False

        self._counters: Counter[str] = Counter()
        self._counters_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._inflight: dict[
            asyncio.AbstractEventLoop, dict[CacheKey, asyncio.Task[TranslationResult]]
        ] = {}
        self._active_tasks: set[asyncio.Task[TranslationResult]] = set()
        self._permanent_failures: dict[str, str] = {}
        self._worker_loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker_thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Optional[TransRelaySettings] = None) -> "Dispatcher":
        """根据配置对象构建调度器及其全部依赖组件。"""
        settings = settings or TransRelaySettings()
        registry = BackendRegistry()
        for name in dict.fromkeys([settings.default_backend, *settings.backend_configs]):
            try:
                backend = build_backend(name, settings.backend_configs.get(name))
            except (BackendNotFoundError, ValidationError) as e:
                logger.warning("跳过无法创建的后端", backend=name, error=str(e))
                continue
            registry.register(name, backend)
        registry.set_default(settings.default_backend)

        return cls(
            registry=registry,
            filters=FilterChain.default(
                settings.filters.min_length, settings.filters.max_length
            ),
            cache=TranslationCache(settings.cache),
            rate_controller=RateController.from_config(settings.rate_limit),
            enabled=settings.enabled,
            default_source_lang=settings.source_lang,
            default_target_lang=settings.target_lang,
            request_timeout=settings.request_timeout,
            acquire_timeout=settings.rate_limit.acquire_timeout,
            coalesce_inflight=settings.coalesce_inflight,
        )

    # ------------------------------------------------------------------ #
    # 生命周期
    # ------------------------------------------------------------------ #

    async def initialize(self) -> None:
        """初始化所有已注册的后端。单个后端初始化失败不会影响其他后端。"""
        if self.initialized:
            return
        logger.info("调度器初始化开始...", backends=self.registry.list_names())
        for name in self.registry.list_names():
            backend = self.registry.get(name)
            if backend is None or backend.initialized:
                continue
            try:
                await backend.initialize()
            except Exception as e:
                logger.error("后端初始化失败", backend=name, error=str(e))
        self.initialized = True
        logger.info("调度器初始化完成。")

    async def close(self) -> None:
        """取消未完成的请求并关闭所有后端。正在等待的调用方会收到取消结果。"""
        current = asyncio.get_running_loop()
        with self._state_lock:
            active = list(self._active_tasks)
            shared = [
                task for tasks in self._inflight.values() for task in tasks.values()
            ]
        await self._cancel_tasks(active, current)
        await self._cancel_tasks(shared, current)
        await asyncio.gather(
            *[backend.close() for backend in self.registry.backends()],
            return_exceptions=True,
        )
        if self._worker_loop is not current:
            self._stop_worker_loop()
        self.initialized = False
        logger.info("调度器已关闭。")

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """供普通线程使用的同步关闭：执行 close() 并停止后台事件循环线程。"""
        with self._state_lock:
            loop = self._worker_loop
        if loop is None:
            asyncio.run(self.close())
            return
        asyncio.run_coroutine_threadsafe(self.close(), loop).result(timeout)
        self._stop_worker_loop(wait=True)

    async def __aenter__(self) -> "Dispatcher":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @staticmethod
    async def _cancel_tasks(
        tasks: list["asyncio.Task[TranslationResult]"],
        current: asyncio.AbstractEventLoop,
    ) -> None:
        local = []
        for task in tasks:
            loop = task.get_loop()
            if loop is current:
                task.cancel()
                local.append(task)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(task.cancel)
        if local:
            await asyncio.gather(*local, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # 后台事件循环
    # ------------------------------------------------------------------ #

    def _ensure_worker_loop(self) -> asyncio.AbstractEventLoop:
        with self._state_lock:
            if self._worker_loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=self._run_worker_loop,
                    args=(loop,),
                    name="trans-relay-dispatcher",
                    daemon=True,
                )
                thread.start()
                self._worker_loop = loop
                self._worker_thread = thread
                logger.info("调度器后台事件循环已启动")
            return self._worker_loop

    @staticmethod
    def _run_worker_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()

    def _stop_worker_loop(self, wait: bool = False) -> None:
        with self._state_lock:
            loop, thread = self._worker_loop, self._worker_thread
            self._worker_loop = None
            self._worker_thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join()
        logger.info("调度器后台事件循环已停止")

    # ------------------------------------------------------------------ #
    # 翻译入口
    # ------------------------------------------------------------------ #

    def _request(
        self,
        text: str,
        source_lang: Optional[str],
        target_lang: Optional[str],
        backend: Optional[str],
    ) -> TranslationRequest:
        return TranslationRequest(
            text=text,
            source_lang=source_lang or self.default_source_lang,
            target_lang=target_lang or self.default_target_lang,
            backend=backend,
        )

    async def translate(
        self,
        text: str,
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> TranslationResult:
        """在当前协程中执行完整流水线并返回终态结果。"""
        return await self.translate_request(
            self._request(text, source_lang, target_lang, backend)
        )

    def translate_async(
        self,
        text: str,
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
        callback: Optional[ResultCallback] = None,
        *,
        timeout: Optional[float] = None,
    ) -> "asyncio.Task[TranslationResult]":
        """
        在后台任务中执行流水线并立即返回该任务，调用方不会被阻塞。

        回调恰好被调用一次：成功、失败、超时或任务被取消都会得到终态结果。
        超时与取消表现为 `error_message="cancelled"` 的失败结果。
        必须在运行中的事件循环内调用。
        """
        request = self._request(text, source_lang, target_lang, backend)
        task = asyncio.get_running_loop().create_task(
            self._run_with_deadline(request, timeout)
        )
        with self._state_lock:
            self._active_tasks.add(task)

        def _on_done(done: "asyncio.Task[TranslationResult]") -> None:
            with self._state_lock:
                self._active_tasks.discard(done)
            self._deliver(request, done, callback)

        task.add_done_callback(_on_done)
        return task

    def submit(
        self,
        text: str,
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
        callback: Optional[ResultCallback] = None,
        *,
        timeout: Optional[float] = None,
    ) -> "concurrent.futures.Future[TranslationResult]":
        """
        线程安全：把请求交给调度器的后台事件循环，立即返回一个 Future。

        回调恰好被调用一次，并在后台事件循环线程中执行。
        """
        request = self._request(text, source_lang, target_lang, backend)
        future = self._submit_request(request, timeout)
        future.add_done_callback(lambda done: self._deliver(request, done, callback))
        return future

    def translate_sync(
        self,
        text: str,
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> TranslationResult:
        """阻塞当前线程直到得到终态结果，供没有事件循环的普通线程调用。"""
        if threading.current_thread() is self._worker_thread:
            raise RuntimeError("不能在调度器的后台事件循环线程中同步等待翻译结果")
        request = self._request(text, source_lang, target_lang, backend)
        future = self._submit_request(request, timeout)
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            return self._cancelled(request)

    def _submit_request(
        self, request: TranslationRequest, timeout: Optional[float]
    ) -> "concurrent.futures.Future[TranslationResult]":
        return asyncio.run_coroutine_threadsafe(
            self._run_with_deadline(request, timeout), self._ensure_worker_loop()
        )

    async def translate_many(
        self,
        texts: Iterable[str],
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> list[TranslationResult]:
        """并发翻译多段文本，结果顺序与输入一致。"""
        return list(
            await asyncio.gather(
                *[
                    self.translate(text, source_lang, target_lang, backend)
                    for text in texts
                ]
            )
        )

    async def translate_request(self, request: TranslationRequest) -> TranslationResult:
        """流水线主体。除任务取消外，不会向调用方抛出任何异常。"""
        self._count("requests")
        try:
            return await self._process(request)
        except Exception as e:
            logger.error("调度流水线发生未预期的错误", error=str(e), exc_info=True)
            return self._failure(
                request, ErrorKind.BACKEND_FAILURE, f"{e.__class__.__name__}: {e}"
            )

    async def _run_with_deadline(
        self, request: TranslationRequest, timeout: Optional[float]
    ) -> TranslationResult:
        if timeout is None:
            return await self.translate_request(request)
        try:
            return await asyncio.wait_for(self.translate_request(request), timeout)
        except asyncio.TimeoutError:
            logger.info("翻译请求超过截止时间", timeout=timeout)
            return self._cancelled(request)

    async def _process(self, request: TranslationRequest) -> TranslationResult:
        text = request.text

        # 1. 空文本
        if not text:
            return self._failure(request, ErrorKind.EMPTY_INPUT, "empty text")

        # 2. 过滤链
        if not self.enabled or not self.filters.should_translate(text):
            self._count("filtered")
            return TranslationResult(
                success=True,
                original_text=text,
                translated_text=text,
                filtered=True,
            )

        # 3. 缓存
        backend_name = request.backend or self.registry.default_name or ""
        key = CacheKey.for_request(request, backend_name)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        # 4. 解析后端
        try:
            backend_name, backend = self.registry.resolve(request.backend)
        except BackendNotFoundError as e:
            return self._failure(
                request, ErrorKind.BACKEND_NOT_FOUND, str(e.args[0]), backend_name
            )

        # 5-7. 速率控制、调用后端、写缓存
        if not self.coalesce_inflight:
            return await self._call_backend(request, backend_name, backend, key)

        loop = asyncio.get_running_loop()
        with self._state_lock:
            loop_inflight = self._inflight.setdefault(loop, {})
            shared = loop_inflight.get(key)
            joined = shared is not None
            if shared is None:
                shared = loop.create_task(
                    self._call_backend(request, backend_name, backend, key)
                )
                loop_inflight[key] = shared
        if joined:
            self._count("coalesced")
            logger.debug("合并到进行中的相同请求", backend=backend_name)
        else:
            shared.add_done_callback(
                lambda done: self._forget_inflight(loop, key, done)
            )

        # 单个调用方被取消不影响共享的后端调用
        try:
            result = await asyncio.shield(shared)
        except asyncio.CancelledError:
            # 共享调用本身被取消（例如调度器关闭）时，等待者得到取消结果
            if shared.cancelled():
                return self._cancelled(request)
            raise
        return result.model_copy()

    def _forget_inflight(
        self,
        loop: asyncio.AbstractEventLoop,
        key: CacheKey,
        done: "asyncio.Task[TranslationResult]",
    ) -> None:
        with self._state_lock:
            tasks = self._inflight.get(loop)
            if tasks is None or tasks.get(key) is not done:
                return
            del tasks[key]
            if not tasks:
                del self._inflight[loop]

    def _lookup(self, key: CacheKey) -> Optional[TranslationResult]:
        try:
            entry = self.cache.get(key)
        except CacheInconsistencyError as e:
            self._count("cache_inconsistencies")
            logger.error("缓存不一致，按未命中处理", error=str(e))
            return None
        if entry is None:
            return None
        return TranslationResult(
            success=True,
            original_text=entry.original_text,
            translated_text=entry.translated_text,
            from_cache=True,
            backend=key.backend or None,
        )

    async def _call_backend(
        self,
        request: TranslationRequest,
        backend_name: str,
        backend: BaseBackend[Any],
        key: CacheKey,
    ) -> TranslationResult:
        try:
            async with self.rate_controller.slot(
                backend_name, timeout=self.acquire_timeout
            ):
                self._count("backend_calls")
                outcome = await asyncio.wait_for(
                    backend.translate(
                        request.text, request.source_lang, request.target_lang
                    ),
                    self.request_timeout,
                )
        except RateLimitTimeoutError as e:
            return self._failure(
                request, ErrorKind.BACKEND_FAILURE, str(e), backend_name, retryable=True
            )
        except asyncio.TimeoutError:
            return self._failure(
                request,
                ErrorKind.BACKEND_FAILURE,
                f"后端 '{backend_name}' 调用超时 ({self.request_timeout}s)",
                backend_name,
                retryable=True,
            )
        except Exception as e:
            return self._failure(
                request,
                ErrorKind.BACKEND_FAILURE,
                f"{e.__class__.__name__}: {e}",
                backend_name,
                retryable=True,
            )

        if isinstance(outcome, EngineError):
            if not outcome.is_retryable:
                self._record_permanent_failure(backend_name, outcome.error_message)
            return self._failure(
                request,
                ErrorKind.BACKEND_FAILURE,
                outcome.error_message,
                backend_name,
                retryable=outcome.is_retryable,
            )

        with self._state_lock:
            self._permanent_failures.pop(backend_name, None)
        try:
            self.cache.put(key, self.cache.new_entry(request.text, outcome.translated_text))
        except CacheInconsistencyError as e:
            self._count("cache_inconsistencies")
            logger.error("写入缓存失败", error=str(e))

        return TranslationResult(
            success=True,
            original_text=request.text,
            translated_text=outcome.translated_text,
            backend=backend_name,
        )

    def _record_permanent_failure(self, backend_name: str, message: str) -> None:
        self._count("permanent_failures")
        with self._state_lock:
            self._permanent_failures[backend_name] = message
        logger.error("后端返回了不可重试的错误", backend=backend_name, error=message)

    def _failure(
        self,
        request: TranslationRequest,
        kind: ErrorKind,
        message: str,
        backend_name: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> TranslationResult:
        self._count("failures")
        logger.warning(
            "翻译失败",
            error_kind=kind.value,
            error=message,
            backend=backend_name,
        )
        return TranslationResult(
            success=False,
            original_text=request.text,
            error_message=message,
            error_kind=kind,
            retryable=retryable,
            backend=backend_name or None,
        )

    def _cancelled(self, request: TranslationRequest) -> TranslationResult:
        self._count("cancelled")
        return TranslationResult(
            success=False,
            original_text=request.text,
            error_message="cancelled",
            error_kind=ErrorKind.CANCELLED,
            backend=request.backend,
        )

    def _deliver(
        self,
        request: TranslationRequest,
        done: _PendingResult,
        callback: Optional[ResultCallback],
    ) -> None:
        if callback is None:
            return
        if done.cancelled():
            result = self._cancelled(request)
        elif done.exception() is not None:
            error = done.exception()
            result = self._failure(
                request, ErrorKind.BACKEND_FAILURE, f"{error.__class__.__name__}: {error}"
            )
        else:
            result = done.result()
        self._invoke_callback(callback, result)

    def _invoke_callback(
        self, callback: ResultCallback, result: TranslationResult
    ) -> None:
        try:
            callback(result)
        except Exception:
            logger.error("翻译回调执行异常", exc_info=True)

    def _count(self, name: str, amount: int = 1) -> None:
        with self._counters_lock:
            self._counters[name] += amount

    # ------------------------------------------------------------------ #
    # 管理接口
    # ------------------------------------------------------------------ #

    def register_backend(self, name: str, backend: BaseBackend[Any]) -> None:
        self.registry.register(name, backend)
        with self._state_lock:
            self._permanent_failures.pop(name, None)

    def register_filter(self, text_filter: BaseFilter) -> None:
        self.filters.register(text_filter)

    def set_default_backend(self, name: str) -> bool:
        return self.registry.set_default(name)

    def set_max_concurrency(self, max_concurrency: int) -> None:
        self.rate_controller.set_max_concurrency(max_concurrency)

    def set_min_delay(self, min_delay: float) -> None:
        self.rate_controller.set_min_delay(min_delay)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info("翻译开关已切换", enabled=enabled)

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate(
        self,
        text: str,
        source_lang: Optional[str] = None,
        target_lang: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> bool:
        """使某个请求对应的缓存条目失效。"""
        request = self._request(text, source_lang, target_lang, backend)
        backend_name = request.backend or self.registry.default_name or ""
        return self.cache.invalidate(CacheKey.for_request(request, backend_name))

    def sweep_cache(self, max_age: Optional[float] = None) -> int:
        return self.cache.sweep(max_age)

    def get_statistics(self) -> EngineStatistics:
        with self._counters_lock:
            counters = dict(self._counters)
        return EngineStatistics(
            total_backends=len(self.registry),
            total_filters=len(self.filters),
            cache_size=len(self.cache),
            default_backend=self.registry.default_name,
            max_concurrency=self.rate_controller.max_concurrency,
            min_delay=self.rate_controller.min_delay,
            enabled=self.enabled,
            requests=counters.get("requests", 0),
            cache_hits=self.cache.hits,
            cache_misses=self.cache.misses,
            filtered=counters.get("filtered", 0),
            backend_calls=counters.get("backend_calls", 0),
            failures=counters.get("failures", 0),
            coalesced=counters.get("coalesced", 0),
            permanent_failures=counters.get("permanent_failures", 0),
        )

    def get_health_advice(self) -> list[str]:
        """根据当前状态给出运维建议；一切正常时返回空列表。"""
        advice: list[str] = []
        stats = self.get_statistics()
        if stats.total_backends == 0:
            advice.append("未注册任何翻译后端，建议至少注册一个翻译服务")
        elif stats.default_backend is not None:
            default = self.registry.get(stats.default_backend)
            if default is not None and not default.is_available:
                advice.append(f"默认后端 '{stats.default_backend}' 当前不可用")

        max_size = self.cache.config.max_size
        if stats.cache_size >= max_size * CACHE_FULL_RATIO:
            advice.append(
                f"翻译缓存已接近容量上限 ({stats.cache_size}/{max_size})，"
                "较早的译文将被淘汰，建议调大 max_size 或清理缓存"
            )

        with self._state_lock:
            permanent = sorted(self._permanent_failures.items())
        for name, message in permanent:
            advice.append(f"后端 '{name}' 返回了不可重试的错误，请检查其配置: {message}")

        if not stats.enabled:
            advice.append("翻译功能已关闭，所有文本将原样返回")
        return advice
