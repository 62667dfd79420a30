# trans_relay/types.py
"""
本模块定义了 Trans-Relay 的核心数据类型。

请求与结果都是一次性的值对象：每次调用创建，交付后即丢弃。
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorKind(str, Enum):
    """结果对象中携带的错误分类。"""

    EMPTY_INPUT = "empty_input"
    FILTERED_OUT = "filtered_out"  # 不是错误，只是有意跳过
    BACKEND_NOT_FOUND = "backend_not_found"
    BACKEND_FAILURE = "backend_failure"
    CACHE_INCONSISTENCY = "cache_inconsistency"
    CANCELLED = "cancelled"


class EngineSuccess(BaseModel):
    """代表从翻译后端成功返回的单次翻译结果。"""

    translated_text: str


class EngineError(BaseModel):
    """代表从翻译后端返回的单次失败结果。"""

    error_message: str
    is_retryable: bool = True


EngineResult = Union[EngineSuccess, EngineError]


class TranslationRequest(BaseModel):
    """一次翻译请求。创建后不可变，语言代码原样传递给后端。"""

    model_config = ConfigDict(frozen=True)

    text: str
    source_lang: str
    target_lang: str
    backend: Optional[str] = None


class TranslationResult(BaseModel):
    """调度器返回给调用方的结果对象。无论成功与否都会返回，绝不抛出异常。"""

    success: bool
    original_text: str = ""
    translated_text: Optional[str] = None
    from_cache: bool = False
    filtered: bool = False
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    # 仅对后端失败有意义：False 表示重试同一个请求也不会成功（通常是配置问题）
    retryable: Optional[bool] = None
    backend: Optional[str] = None
    completed_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_consistency(self) -> "TranslationResult":
        if not self.success and self.error_message is None:
            raise ValueError("失败的结果必须包含 error_message。")
        if self.success and self.translated_text is None:
            raise ValueError("成功的结果必须包含 translated_text。")
        return self

    @property
    def display_text(self) -> str:
        """可以直接展示给用户的文本：有译文用译文，否则退回原文。"""
        if self.translated_text is not None:
            return self.translated_text
        return self.original_text


class EngineStatistics(BaseModel):
    """调度器的统计快照，仅供参考。"""

    total_backends: int
    total_filters: int
    cache_size: int
    default_backend: Optional[str]
    max_concurrency: int
    min_delay: float
    enabled: bool = True
    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    filtered: int = 0
    backend_calls: int = 0
    failures: int = 0
    coalesced: int = 0
    permanent_failures: int = 0
