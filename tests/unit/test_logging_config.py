# tests/unit/test_logging_config.py
"""针对 `trans_relay.logging_config` 模块的单元测试。"""

import json
import logging

import pytest
import structlog

from trans_relay.logging_config import APP_LOGGER_NAME, RichEventRenderer, setup_logging


def test_json_format_emits_machine_readable_lines(
    capsys: pytest.CaptureFixture[str],
) -> None:
    setup_logging(log_level="DEBUG", log_format="json")
    structlog.get_logger("trans_relay.tests").info("测试事件", answer=42)

    events = []
    for line in capsys.readouterr().err.splitlines():
        try:
            events.append(json.loads(line))
        except json.JSONDecodeError:
            continue

    setup_event = next(e for e in events if e.get("event") == "日志系统已配置完成。")
    assert setup_event["log_format"] == "json"
    assert setup_event["app_log_level"] == "DEBUG"
    test_event = next(e for e in events if e.get("event") == "测试事件")
    assert test_event["answer"] == 42
    assert test_event["level"] == "info"
    assert "timestamp" in test_event


def test_levels_are_applied_to_app_and_root_loggers() -> None:
    setup_logging(log_level="error")

    assert logging.getLogger(APP_LOGGER_NAME).level == logging.ERROR
    assert logging.getLogger().level == logging.WARNING
    assert len(logging.getLogger().handlers) == 1


def test_renderer_single_line_for_info() -> None:
    renderer = RichEventRenderer()
    output = renderer(
        None,
        "info",
        {
            "event": "已注册翻译后端",
            "level": "info",
            "logger": "trans_relay.registry",
            "timestamp": "12:00:00",
            "backend": "debug",
        },
    )

    assert "\n" not in output
    assert "12:00:00" in output
    assert "已注册翻译后端" in output
    assert "backend='debug'" in output
    assert "(trans_relay.registry)" in output


def test_renderer_panel_for_warnings() -> None:
    renderer = RichEventRenderer(show_timestamp=False)
    output = renderer(
        None,
        "warning",
        {"event": "翻译失败", "level": "warning", "logger": "x", "error": "boom"},
    )

    assert "WARNING" in output
    assert "翻译失败" in output
    assert "boom" in output
    assert len(output.splitlines()) > 1


def test_renderer_truncates_long_values() -> None:
    renderer = RichEventRenderer(kv_truncate_at=10, show_logger_name=False)
    output = renderer(None, "info", {"event": "e", "level": "info", "v": "x" * 50})

    assert "x" * 20 not in output
    assert "..." in output


def test_renderer_skips_empty_events() -> None:
    assert RichEventRenderer()(None, "info", {"event": "  "}) == ""
