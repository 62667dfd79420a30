# trans_relay/backends/lingocloud.py
"""提供一个使用彩云小译 (LingoCloud) HTTP API 的翻译后端。"""

import json
from typing import Any, Optional

import httpx
import structlog
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from trans_relay.backends.base import BaseBackend, BaseBackendConfig
from trans_relay.exceptions import APIError, ConfigurationError
from trans_relay.types import EngineError, EngineResult, EngineSuccess

logger = structlog.get_logger(__name__)

# 引擎侧语言代码 -> 服务商语言代码
SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "en",
    "ja": "ja",
    "jp": "ja",
    "zh": "zh",
    "zh-Hans": "zh",
    "zh-CN": "zh",
    "zh-Hant": "zh",
    "zh-TW": "zh",
}


def map_language(lang: str) -> str:
    """把语言代码映射到服务商的代码空间，未知代码原样返回。"""
    return SUPPORTED_LANGUAGES.get(lang, lang)


def build_payload(
    texts: list[str], target_lang: str, request_id: str, detect: bool = True
) -> dict[str, Any]:
    """构造请求体，例如 {"source": [...], "trans_type": "auto2zh", ...}。"""
    return {
        "source": list(texts),
        "trans_type": f"auto2{map_language(target_lang)}",
        "request_id": request_id,
        "detect": detect,
    }


def _unwrap(value: str) -> str:
    # 部分响应会把译文再编码一层 JSON 字符串，例如 "\"你好\""
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] == '"':
        try:
            decoded = json.loads(stripped)
        except ValueError:
            return stripped[1:-1]
        if isinstance(decoded, str):
            return decoded
    return value


def extract_translations(data: Any) -> list[str]:
    """从响应 JSON 中提取 target 字段，返回纯文本译文列表。"""
    if not isinstance(data, dict) or "target" not in data:
        raise APIError(f"响应中缺少 'target' 字段: {data!r}")
    target = data["target"]
    if isinstance(target, str):
        return [_unwrap(target)]
    if isinstance(target, list) and all(isinstance(item, str) for item in target):
        return [_unwrap(item) for item in target]
    raise APIError(f"无法识别的 'target' 字段格式: {target!r}")


class LingoCloudBackendConfig(BaseSettings, BaseBackendConfig):
    """LingoCloud 后端的配置模型。"""

    model_config = SettingsConfigDict(env_prefix="TR_LINGOCLOUD_", extra="ignore")

    token: Optional[SecretStr] = None
    endpoint: str = "https://api.interpreter.caiyunai.com/v1/translator"
    request_id: str = "demo"
    detect: bool = True
    source_lang: Optional[str] = None
    target_lang: Optional[str] = None
    verify_tls: bool = Field(default=True, description="为 False 时不校验该主机的证书")
    timeout: float = Field(default=30.0, gt=0)


class LingoCloudBackend(BaseBackend[LingoCloudBackendConfig]):
    """彩云小译 HTTP 后端。"""

    CONFIG_MODEL = LingoCloudBackendConfig
    VERSION = "1.0.0"

    def __init__(
        self,
        config: LingoCloudBackendConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def _validate(self) -> None:
        if self.config.token is None or not self.config.token.get_secret_value():
            raise ConfigurationError(
                "LingoCloud 后端配置错误: 缺少访问令牌 (TR_LINGOCLOUD_TOKEN)。"
            )
        for label, lang in (
            ("源语言", self.config.source_lang),
            ("目标语言", self.config.target_lang),
        ):
            if lang is not None and lang not in SUPPORTED_LANGUAGES:
                raise ConfigurationError(f"{label} '{lang}' 不受 LingoCloud 支持。")

    def _headers(self) -> dict[str, str]:
        if self.config.token is None:
            raise ConfigurationError(
                "LingoCloud 后端配置错误: 缺少访问令牌 (TR_LINGOCLOUD_TOKEN)。"
            )
        return {
            "Content-Type": "application/json",
            "X-Authorization": f"token {self.config.token.get_secret_value()}",
        }

    async def initialize(self) -> None:
        self._validate()
        if not self.config.verify_tls:
            logger.warning("LingoCloud 后端已关闭证书校验", endpoint=self.config.endpoint)
        self.client = httpx.AsyncClient(
            timeout=self.config.timeout,
            verify=self.config.verify_tls,
            transport=self._transport,
        )
        logger.info("LingoCloud 后端已初始化", endpoint=self.config.endpoint)
        await super().initialize()

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()
            logger.info("LingoCloud 后端的 HTTP 客户端已关闭。")
        self.client = None
        await super().close()

    async def translate_texts(
        self, texts: list[str], target_lang: str
    ) -> list[str]:
        """一次请求翻译多段文本，失败时抛出 APIError。"""
        if self.client is None:
            await self.initialize()
        if self.client is None:
            raise APIError("LingoCloud HTTP 客户端未初始化")

        payload = build_payload(
            texts, target_lang, self.config.request_id, self.config.detect
        )
        try:
            response = await self.client.post(
                self.config.endpoint, json=payload, headers=self._headers()
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise APIError(
                f"LingoCloud 返回错误状态码 {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise APIError(f"LingoCloud 网络错误: {e}") from e
        except ValueError as e:
            raise APIError(f"LingoCloud 返回了无法解析的 JSON: {e}") from e

        translations = extract_translations(data)
        if len(translations) != len(texts):
            raise APIError(
                f"译文数量 ({len(translations)}) 与原文数量 ({len(texts)}) 不一致"
            )
        return translations

    async def _execute_translation(
        self, text: str, source_lang: str, target_lang: str
    ) -> EngineResult:
        try:
            translations = await self.translate_texts([text], target_lang)
        except ConfigurationError as e:
            return EngineError(error_message=str(e), is_retryable=False)
        except APIError as e:
            return EngineError(error_message=str(e), is_retryable=True)
        return EngineSuccess(translated_text=translations[0])
