# trans_relay/backends/debug.py
"""提供一个用于开发和测试的调试翻译后端。"""

import asyncio
from typing import Dict, Optional

from pydantic import Field

from trans_relay.backends.base import BaseBackend, BaseBackendConfig
from trans_relay.types import EngineError, EngineResult, EngineSuccess


class DebugBackendConfig(BaseBackendConfig):
    """Debug 后端的配置模型。"""

    mode: str = Field(default="SUCCESS", description="SUCCESS or FAIL")
    fail_on_text: Optional[str] = Field(default=None)
    translation_map: Dict[str, str] = Field(default_factory=dict)
    latency: float = Field(default=0.0, ge=0, description="模拟网络延迟（秒）")


class DebugBackend(BaseBackend[DebugBackendConfig]):
    """一个确定性的调试翻译后端，并记录调用次数。"""

    CONFIG_MODEL = DebugBackendConfig
    VERSION = "1.0.0"

    def __init__(self, config: Optional[DebugBackendConfig] = None):
        super().__init__(config or DebugBackendConfig())
        self.call_count = 0

    async def _execute_translation(
        self, text: str, source_lang: str, target_lang: str
    ) -> EngineResult:
        self.call_count += 1
        if self.config.latency:
            await asyncio.sleep(self.config.latency)

        if self.config.mode == "FAIL":
            return EngineError(error_message="DebugBackend is in FAIL mode.")

        if self.config.fail_on_text and text == self.config.fail_on_text:
            return EngineError(error_message=f"模拟失败：检测到配置的文本 '{text}'")

        translated_text = self.config.translation_map.get(
            text, f"Translated({text}) to {target_lang}"
        )
        return EngineSuccess(translated_text=translated_text)
