# trans_relay/backends/translators_backend.py
"""提供一个基于 `translators` 库的免费翻译后端（默认使用 Google）。"""

import asyncio
from typing import Any, Optional

import structlog

from trans_relay.backends.base import BaseBackend, BaseBackendConfig
from trans_relay.exceptions import ConfigurationError
from trans_relay.types import EngineError, EngineResult, EngineSuccess

logger = structlog.get_logger(__name__)


class TranslatorsBackendConfig(BaseBackendConfig):
    """Translators 后端的配置。"""

    provider: str = "google"


class TranslatorsBackend(BaseBackend[TranslatorsBackendConfig]):
    """`translators` 库是同步的，调用在工作线程中执行。"""

    CONFIG_MODEL = TranslatorsBackendConfig
    VERSION = "1.0.0"

    def __init__(self, config: Optional[TranslatorsBackendConfig] = None):
        super().__init__(config or TranslatorsBackendConfig())
        self.ts_module: Optional[Any] = None

    def _ensure_loaded(self) -> Any:
        if self.ts_module is not None:
            return self.ts_module
        logger.debug("正在惰性加载 'translators' 库...")
        try:
            import translators as ts
        except ImportError as e:
            raise ConfigurationError(
                "要使用 TranslatorsBackend, 请安装 'translators' 库: "
                'pip install "trans-relay[translators]"'
            ) from e
        self.ts_module = ts
        return ts

    async def initialize(self) -> None:
        self._ensure_loaded()
        logger.info("Translators 后端已初始化。", provider=self.config.provider)
        await super().initialize()

    async def _execute_translation(
        self, text: str, source_lang: str, target_lang: str
    ) -> EngineResult:
        try:
            ts_lib = self._ensure_loaded()
        except ConfigurationError as e:
            return EngineError(error_message=str(e), is_retryable=False)
        provider = self.config.provider

        def _translate_sync() -> str:
            return str(
                ts_lib.translate_text(
                    query_text=text,
                    translator=provider,
                    from_language=source_lang or "auto",
                    to_language=target_lang,
                )
            )

        try:
            translated_text = await asyncio.to_thread(_translate_sync)
        except Exception as e:
            return EngineError(error_message=f"Translators({provider}) Error: {e}")
        return EngineSuccess(translated_text=translated_text)
