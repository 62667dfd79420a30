# trans_relay/backends/base.py
"""
本模块定义了所有翻译后端插件必须继承的抽象基类（ABC）。

后端只负责“把一段文本翻译成目标语言”这一件事；
缓存、过滤、速率控制都由调度器统一处理。
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

import structlog
from pydantic import BaseModel

from trans_relay.types import EngineError, EngineResult, EngineSuccess

logger = structlog.get_logger(__name__)

_ConfigType = TypeVar("_ConfigType", bound="BaseBackendConfig")


class BaseBackendConfig(BaseModel):
    """所有后端配置模型的基类。"""

    enabled: bool = True


class BaseBackend(ABC, Generic[_ConfigType]):
    """翻译后端的纯异步抽象基类。"""

    CONFIG_MODEL: type[_ConfigType]
    VERSION: str = "1.0.0"

    def __init__(self, config: _ConfigType):
        self.config = config
        self.initialized: bool = False

    @property
    def name(self) -> str:
        """从类名自动推断后端的名称。"""
        return self.__class__.__name__.replace("Backend", "").lower()

    @property
    def is_available(self) -> bool:
        """后端当前是否可以接收请求。"""
        return self.config.enabled

    async def initialize(self) -> None:
        """后端的异步初始化钩子，用于建立连接池、校验凭据等。"""
        self.initialized = True

    async def close(self) -> None:
        """后端的异步关闭钩子，用于安全释放资源。"""
        self.initialized = False

    @abstractmethod
    async def _execute_translation(
        self, text: str, source_lang: str, target_lang: str
    ) -> EngineResult:
        """[子类实现] 真正执行单次翻译的逻辑。"""
        ...

    async def translate(
        self, text: str, source_lang: str, target_lang: str
    ) -> EngineResult:
        """[模板方法] 执行单次翻译，并把任何异常包装为 EngineError。"""
        if not self.is_available:
            return EngineError(
                error_message=f"后端 '{self.name}' 当前不可用。", is_retryable=False
            )
        try:
            result = await self._execute_translation(text, source_lang, target_lang)
        except Exception as e:
            logger.warning(
                "后端执行异常", backend=self.name, error=f"{e.__class__.__name__}: {e}"
            )
            return EngineError(
                error_message=f"后端执行异常: {e.__class__.__name__}: {e}",
                is_retryable=True,
            )
        if isinstance(result, EngineSuccess | EngineError):
            return result
        return EngineError(
            error_message=f"未知的后端结果类型: {type(result)}", is_retryable=False
        )
