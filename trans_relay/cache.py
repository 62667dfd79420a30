# trans_relay/cache.py
"""本模块提供线程安全的内存翻译缓存，用于避免重复的后端请求。"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog
from cachetools import LRUCache
from pydantic import BaseModel, Field

from trans_relay.exceptions import CacheInconsistencyError
from trans_relay.types import TranslationRequest
from trans_relay.utils import text_fingerprint

logger = structlog.get_logger(__name__)


class CacheConfig(BaseModel):
    """缓存配置模型。"""

    max_size: int = Field(default=10000, gt=0)
    # None 表示条目永不过期，直到被显式清理
    max_age: Optional[float] = Field(default=None, gt=0)


@dataclass(frozen=True, eq=False)
class CacheKey:
    """
    缓存键：由后端、语言对和文本共同决定。

    哈希只使用文本的 sha256 指纹，相等性比较则使用原始文本本身，
    因此即使指纹碰撞，两个不同的文本也不会共享同一个缓存槽位。
    """

    backend: str
    source_lang: str
    target_lang: str
    fingerprint: str
    text: str = field(repr=False)

    @classmethod
    def build(
        cls, backend: str, source_lang: str, target_lang: str, text: str
    ) -> "CacheKey":
        return cls(backend, source_lang, target_lang, text_fingerprint(text), text)

    @classmethod
    def for_request(cls, request: TranslationRequest, backend: str) -> "CacheKey":
        return cls.build(backend, request.source_lang, request.target_lang, request.text)

    def __hash__(self) -> int:
        return hash(
            (self.backend, self.source_lang, self.target_lang, self.fingerprint)
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheKey):
            return NotImplemented
        return (
            self.backend == other.backend
            and self.source_lang == other.source_lang
            and self.target_lang == other.target_lang
            and self.fingerprint == other.fingerprint
            and self.text == other.text
        )


@dataclass
class CacheEntry:
    """缓存条目。只由缓存存储持有，只经由其 API 修改。"""

    original_text: str
    translated_text: str
    created_at: float
    last_accessed: float = 0.0
    hits: int = 0
    valid: bool = True


class TranslationCache:
    """一个基于 LRU 淘汰的、线程安全的翻译结果缓存。"""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: LRUCache[CacheKey, CacheEntry] = LRUCache(
            maxsize=self.config.max_size
        )
        self.hits = 0
        self.misses = 0

    def new_entry(self, original_text: str, translated_text: str) -> CacheEntry:
        now = self._clock()
        return CacheEntry(
            original_text=original_text,
            translated_text=translated_text,
            created_at=now,
            last_accessed=now,
        )

    def _is_stale(self, entry: CacheEntry, now: float, max_age: Optional[float]) -> bool:
        if not entry.valid:
            return True
        return max_age is not None and now - entry.created_at > max_age

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """查找缓存条目。失效或过期的条目会被顺带清除并视为未命中。"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = self._clock()
            if self._is_stale(entry, now, self.config.max_age):
                del self._entries[key]
                self.misses += 1
                return None

            if entry.original_text != key.text:
                del self._entries[key]
                self.misses += 1
                raise CacheInconsistencyError(
                    f"缓存条目与键不匹配: fingerprint={key.fingerprint}"
                )

            entry.last_accessed = now
            entry.hits += 1
            self.hits += 1
            return entry

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        if entry.original_text != key.text:
            raise CacheInconsistencyError("写入的缓存条目与键的原文不一致")
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: CacheKey) -> bool:
        """将条目标记为失效并移除，返回该键此前是否存在。"""
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.valid = False
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("翻译缓存已清空")

    def sweep(self, max_age: Optional[float] = None) -> int:
        """立即清除所有失效或超龄的条目，返回被清除的数量。"""
        effective_max_age = max_age if max_age is not None else self.config.max_age
        with self._lock:
            now = self._clock()
            stale_keys = [
                key
                for key, entry in self._entries.items()
                if self._is_stale(entry, now, effective_max_age)
            ]
            for key in stale_keys:
                del self._entries[key]
        if stale_keys:
            logger.info("缓存清扫完成", removed=len(stale_keys))
        return len(stale_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)
