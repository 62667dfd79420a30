# trans_relay/logging_config.py
"""
本模块负责集中配置项目的日志系统。

structlog 负责结构化事件的加工，标准库 logging 作为最终输出端；
console 格式借助 rich 渲染为紧凑的单行或面板，json 格式面向生产环境。
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Literal

import structlog
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from structlog.typing import Processor

APP_LOGGER_NAME = "trans_relay"


class RichEventRenderer:
    """
    一个 structlog 处理器，把日志事件渲染为 rich 文本。

    WARNING 及以上级别渲染为带键值表格的面板，其余级别渲染为单行，
    以免高频的调试日志刷屏。
    """

    def __init__(
        self,
        kv_truncate_at: int = 80,
        show_timestamp: bool = True,
        show_logger_name: bool = True,
        kv_key_width: int = 15,
    ):
        self._console = Console()
        self._kv_truncate_at = kv_truncate_at
        self._show_timestamp = show_timestamp
        self._show_logger_name = show_logger_name
        self._kv_key_width = kv_key_width
        self._level_styles = {
            "debug": ("blue", "DEBUG   "),
            "info": ("green", "INFO    "),
            "warning": ("yellow", "WARNING "),
            "error": ("bold red", "ERROR   "),
            "critical": ("bold magenta", "CRITICAL"),
        }
        self._panel_levels = {"warning", "error", "critical"}

    def __call__(
        self, logger: Any, name: str, event_dict: MutableMapping[str, Any]
    ) -> str:
        event = str(event_dict.pop("event", "")).strip()
        if not event:
            return ""

        timestamp = str(event_dict.pop("timestamp", ""))
        level = str(event_dict.pop("level", "info")).lower()
        logger_name = str(event_dict.pop("logger", "unknown"))
        style, level_text = self._level_styles.get(level, ("default", level.upper()))

        if level in self._panel_levels:
            return self._render_panel(
                timestamp, level_text, style, logger_name, event, event_dict
            )
        return self._render_line(
            timestamp, level_text, style, logger_name, event, event_dict
        )

    def _format_value(self, value: Any) -> str:
        value_repr = repr(value)
        if len(value_repr) > self._kv_truncate_at:
            value_repr = value_repr[: self._kv_truncate_at - 3] + "..."
        return value_repr

    def _render_line(
        self,
        timestamp: str,
        level_text: str,
        style: str,
        logger_name: str,
        event: str,
        kv: MutableMapping[str, Any],
    ) -> str:
        line = Text()
        if self._show_timestamp and timestamp:
            line.append(timestamp, style="dim")
            line.append(" ")
        line.append(level_text, style=style)
        line.append(" ")
        line.append(event)
        for key, value in sorted(kv.items()):
            line.append(f" {key}=", style="dim")
            line.append(self._format_value(value))
        if self._show_logger_name:
            line.append(f" ({logger_name})", style="cyan dim")

        with self._console.capture() as capture:
            self._console.print(line)
        return capture.get().rstrip()

    def _render_panel(
        self,
        timestamp: str,
        level_text: str,
        style: str,
        logger_name: str,
        event: str,
        kv: MutableMapping[str, Any],
    ) -> str:
        title_parts = [f"[{style}]{level_text}[/]"]
        if self._show_logger_name:
            title_parts.append(f"[cyan dim]({logger_name})[/]")
        title = Text.from_markup(" ".join(title_parts))

        renderables: list[RenderableType] = [Text(event)]
        if kv:
            kv_table = Table(show_header=False, show_edge=False, box=None, padding=(0, 1))
            kv_table.add_column(style="dim", justify="right", width=self._kv_key_width)
            kv_table.add_column(overflow="fold")
            for key, value in sorted(kv.items()):
                kv_table.add_row(f"{key} :", Text(self._format_value(value)))
            renderables.append(kv_table)

        subtitle = Text(timestamp, style="dim") if self._show_timestamp and timestamp else None
        with self._console.capture() as capture:
            self._console.print(
                Panel(
                    Group(*renderables),
                    title=title,
                    title_align="left",
                    subtitle=subtitle,
                    subtitle_align="right",
                    border_style=style,
                    expand=False,
                )
            )
        return capture.get().rstrip()


def setup_logging(
    log_level: str = "INFO",
    log_format: Literal["json", "console"] = "console",
    show_timestamp: bool = True,
    show_logger_name: bool = True,
    kv_truncate_at: int = 80,
) -> None:
    """
    配置全局的 structlog 日志系统。

    Args:
        log_level: 应用日志的最低级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)。
        log_format: 'console' 为开发环境的彩色输出，'json' 为机器可读输出。
        show_timestamp: 是否在 console 输出中显示时间戳。
        show_logger_name: 是否在 console 输出中显示记录器名称。
        kv_truncate_at: console 模式下键值对的截断长度。

    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        processors.append(structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False))
        processors.append(
            RichEventRenderer(
                kv_truncate_at=kv_truncate_at,
                show_timestamp=show_timestamp,
                show_logger_name=show_logger_name,
            )
        )
    else:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    class PassthroughFormatter(logging.Formatter):
        """直接输出 structlog 已经渲染好的字符串。"""

        def format(self, record: logging.LogRecord) -> str:
            return str(record.getMessage())

    handler = logging.StreamHandler()
    handler.setFormatter(PassthroughFormatter())

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(log_level.upper())
    app_logger.propagate = True

    structlog.get_logger("trans_relay.logging_config").debug(
        "日志系统已配置完成。", log_format=log_format, app_log_level=log_level.upper()
    )
