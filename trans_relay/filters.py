# trans_relay/filters.py
"""
本模块定义了翻译过滤器及其有序过滤链。

过滤器是无状态的谓词，决定一段文本是否值得发送给翻译后端。
过滤链按注册顺序依次执行，遇到第一个拒绝的过滤器即返回 False。
"""

import re
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

_DIGITS_ONLY = re.compile(r"^\d+$")
_SYMBOLS_ONLY = re.compile(r"^[^\w\s]+$")


class BaseFilter(ABC):
    """所有过滤器的抽象基类。"""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def should_translate(self, text: str) -> bool: ...


class EmptyTextFilter(BaseFilter):
    """拒绝空文本或仅包含空白的文本。"""

    def should_translate(self, text: str) -> bool:
        return bool(text) and bool(text.strip())


class NumberOnlyFilter(BaseFilter):
    """拒绝纯数字文本。"""

    def should_translate(self, text: str) -> bool:
        return _DIGITS_ONLY.match(text) is None


class SpecialCharacterFilter(BaseFilter):
    """拒绝只由标点或符号组成的文本。"""

    def should_translate(self, text: str) -> bool:
        return _SYMBOLS_ONLY.match(text) is None


class TextLengthFilter(BaseFilter):
    """拒绝长度不在 [min_length, max_length] 范围内的文本。"""

    def __init__(self, min_length: int = 1, max_length: Optional[int] = None):
        if min_length < 0:
            raise ValueError("min_length 不能为负数")
        if max_length is not None and max_length < min_length:
            raise ValueError("max_length 必须大于或等于 min_length")
        self.min_length = min_length
        self.max_length = max_length

    def should_translate(self, text: str) -> bool:
        length = len(text)
        if length < self.min_length:
            return False
        return self.max_length is None or length <= self.max_length


class FilterChain:
    """线程安全的有序过滤链。"""

    def __init__(self, filters: Iterable[BaseFilter] = ()):
        self._lock = threading.Lock()
        self._filters: list[BaseFilter] = list(filters)

    @classmethod
    def default(
        cls, min_length: int = 1, max_length: Optional[int] = None
    ) -> "FilterChain":
        """构建包含基础过滤器的过滤链；配置了长度限制时追加长度过滤器。"""
        chain = cls([EmptyTextFilter(), NumberOnlyFilter(), SpecialCharacterFilter()])
        if min_length > 1 or max_length is not None:
            chain.register(TextLengthFilter(min_length, max_length))
        return chain

    def register(self, text_filter: BaseFilter) -> None:
        with self._lock:
            self._filters.append(text_filter)
        logger.info("已注册翻译过滤器", filter_name=text_filter.name)

    def names(self) -> list[str]:
        with self._lock:
            return [f.name for f in self._filters]

    def __len__(self) -> int:
        with self._lock:
            return len(self._filters)

    def should_translate(self, text: str) -> bool:
        # 在锁外执行过滤器，快照保证遍历期间注册新过滤器不会相互干扰
        with self._lock:
            snapshot = list(self._filters)
        for text_filter in snapshot:
            try:
                if not text_filter.should_translate(text):
                    logger.debug("文本被过滤器拒绝", filter_name=text_filter.name)
                    return False
            except Exception:
                logger.error(
                    "过滤器执行异常，按拒绝处理",
                    filter_name=text_filter.name,
                    exc_info=True,
                )
                return False
        return True
