# trans_relay/__init__.py
"""Trans-Relay: 一个带缓存、过滤与速率控制的可插拔翻译调度器。

它把运行时发现的文本交给可切换的远程翻译后端，并保证失败永远不会
以异常的形式抛给调用方。
"""

__version__ = "0.1.0"

from .backends.base import BaseBackend, BaseBackendConfig
from .cache import CacheConfig, CacheEntry, CacheKey, TranslationCache
from .config import TransRelaySettings
from .dispatcher import Dispatcher
from .filters import BaseFilter, FilterChain
from .rate_limiter import RateController
from .registry import BackendRegistry
from .types import ErrorKind, TranslationRequest, TranslationResult

__all__ = [
    "__version__",
    "Dispatcher",
    "TransRelaySettings",
    "BackendRegistry",
    "BaseBackend",
    "BaseBackendConfig",
    "BaseFilter",
    "FilterChain",
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "TranslationCache",
    "RateController",
    "ErrorKind",
    "TranslationRequest",
    "TranslationResult",
]
