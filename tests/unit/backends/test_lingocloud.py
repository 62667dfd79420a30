# tests/unit/backends/test_lingocloud.py
"""
针对 `LingoCloudBackend` 的单元测试。

使用 `httpx.MockTransport` 模拟远端服务，不产生真实的网络请求。
"""

import json
from typing import Any, Callable

import httpx
import pytest

from trans_relay.backends.lingocloud import (
    LingoCloudBackend,
    LingoCloudBackendConfig,
    build_payload,
    extract_translations,
    map_language,
)
from trans_relay.exceptions import APIError, ConfigurationError
from trans_relay.types import EngineError, EngineSuccess

Handler = Callable[[httpx.Request], httpx.Response]


def _make_backend(handler: Handler, **config: Any) -> LingoCloudBackend:
    config.setdefault("token", "secret-token")
    return LingoCloudBackend(
        LingoCloudBackendConfig(**config), transport=httpx.MockTransport(handler)
    )


def _echo_handler(captured: list[httpx.Request]) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        body = json.loads(request.content)
        return httpx.Response(
            200, json={"target": [f"译:{text}" for text in body["source"]]}
        )

    return handler


@pytest.mark.parametrize(
    "lang, expected",
    [("zh-CN", "zh"), ("zh-Hant", "zh"), ("jp", "ja"), ("en", "en"), ("ko", "ko")],
)
def test_map_language(lang: str, expected: str) -> None:
    assert map_language(lang) == expected


def test_build_payload_uses_auto_detect_trans_type() -> None:
    payload = build_payload(["Hello"], "zh-CN", "demo")
    assert payload == {
        "source": ["Hello"],
        "trans_type": "auto2zh",
        "request_id": "demo",
        "detect": True,
    }


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"target": ["你好"]}, ["你好"]),
        ({"target": "你好"}, ["你好"]),
        ({"target": ['"你好"', "世界"]}, ["你好", "世界"]),
    ],
)
def test_extract_translations(data: Any, expected: list[str]) -> None:
    assert extract_translations(data) == expected


@pytest.mark.parametrize("data", [{}, {"target": 42}, ["target"], {"target": [1]}])
def test_extract_translations_rejects_malformed_responses(data: Any) -> None:
    with pytest.raises(APIError):
        extract_translations(data)


@pytest.mark.asyncio
async def test_translate_sends_expected_request() -> None:
    captured: list[httpx.Request] = []
    backend = _make_backend(_echo_handler(captured))
    await backend.initialize()

    result = await backend.translate("Hello", "en", "zh-CN")
    await backend.close()

    assert isinstance(result, EngineSuccess)
    assert result.translated_text == "译:Hello"
    request = captured[0]
    assert str(request.url) == "https://api.interpreter.caiyunai.com/v1/translator"
    assert request.headers["X-Authorization"] == "token secret-token"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content)["trans_type"] == "auto2zh"
    assert backend.client is None


@pytest.mark.asyncio
async def test_translate_texts_batches_in_one_request() -> None:
    captured: list[httpx.Request] = []
    backend = _make_backend(_echo_handler(captured))

    translations = await backend.translate_texts(["one", "two"], "ja")
    await backend.close()

    assert translations == ["译:one", "译:two"]
    assert len(captured) == 1


@pytest.mark.asyncio
async def test_http_error_status_becomes_retryable_engine_error() -> None:
    backend = _make_backend(lambda request: httpx.Response(500, text="oops"))

    result = await backend.translate("Hello", "en", "zh")
    await backend.close()

    assert isinstance(result, EngineError)
    assert result.is_retryable is True
    assert "500" in result.error_message


@pytest.mark.asyncio
async def test_network_error_becomes_engine_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = _make_backend(handler)
    result = await backend.translate("Hello", "en", "zh")
    await backend.close()

    assert isinstance(result, EngineError)
    assert "网络错误" in result.error_message


@pytest.mark.asyncio
async def test_invalid_json_becomes_engine_error() -> None:
    backend = _make_backend(lambda request: httpx.Response(200, text="not json"))
    result = await backend.translate("Hello", "en", "zh")
    await backend.close()

    assert isinstance(result, EngineError)


@pytest.mark.asyncio
async def test_count_mismatch_raises_api_error() -> None:
    backend = _make_backend(
        lambda request: httpx.Response(200, json={"target": ["only one"]})
    )
    with pytest.raises(APIError, match="不一致"):
        await backend.translate_texts(["one", "two"], "zh")
    await backend.close()


@pytest.mark.asyncio
async def test_missing_token_is_a_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("TR_LINGOCLOUD_TOKEN", raising=False)
    backend = LingoCloudBackend(LingoCloudBackendConfig())

    with pytest.raises(ConfigurationError):
        await backend.initialize()

    result = await backend.translate("Hello", "en", "zh")
    assert isinstance(result, EngineError)
    assert result.is_retryable is False


def test_headers_without_token_raise_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("TR_LINGOCLOUD_TOKEN", raising=False)
    backend = LingoCloudBackend(LingoCloudBackendConfig())

    with pytest.raises(ConfigurationError, match="TR_LINGOCLOUD_TOKEN"):
        backend._headers()


@pytest.mark.asyncio
async def test_translate_texts_without_client_raises_api_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    backend = _make_backend(_echo_handler([]))

    async def _noop_initialize() -> None:
        return None

    monkeypatch.setattr(backend, "initialize", _noop_initialize)

    with pytest.raises(APIError, match="未初始化"):
        await backend.translate_texts(["Hello"], "zh")


@pytest.mark.asyncio
async def test_unsupported_configured_language_is_rejected() -> None:
    backend = _make_backend(_echo_handler([]), target_lang="ko")
    with pytest.raises(ConfigurationError, match="ko"):
        await backend.initialize()


def test_token_can_come_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TR_LINGOCLOUD_TOKEN", "env-token")
    config = LingoCloudBackendConfig()
    assert config.token is not None
    assert config.token.get_secret_value() == "env-token"
