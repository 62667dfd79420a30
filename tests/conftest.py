# tests/conftest.py
"""项目全局共享的测试 Fixtures。"""

import logging
from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
import pytest_asyncio
import structlog
from pytest_mock import MockerFixture
from rich.console import Console

from tests.helpers.factories import make_dispatcher
from trans_relay.backends.debug import DebugBackend
from trans_relay.dispatcher import Dispatcher


@pytest.fixture(scope="session", autouse=True)
def disable_rich_colors_for_tests(
    session_mocker: MockerFixture,
) -> Generator[None, None, None]:
    """全局禁用 rich 库的颜色输出，以确保测试结果的确定性。"""
    original_init = Console.__init__

    def new_init(self: Console, *args: Any, **kwargs: Any) -> None:
        kwargs["force_terminal"] = False
        kwargs["color_system"] = None
        original_init(self, *args, **kwargs)

    session_mocker.patch("rich.console.Console.__init__", new=new_init)
    yield


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """每个测试结束后撤销 setup_logging 对全局日志状态的修改。"""
    yield
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)


@pytest.fixture
def debug_backend() -> DebugBackend:
    return DebugBackend()


@pytest_asyncio.fixture
async def dispatcher(debug_backend: DebugBackend) -> AsyncGenerator[Dispatcher, None]:
    """一个注册了 debug 后端、没有请求间隔的调度器。"""
    instance = make_dispatcher(debug=debug_backend)
    await instance.initialize()
    yield instance
    await instance.close()
