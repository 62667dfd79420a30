# trans_relay/cli.py
"""
Trans-Relay 的命令行接口 (CLI)。

提供单条翻译、批量翻译、查看已注册后端与统计信息等命令，
主要用于调试后端配置与观察调度器行为。
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Coroutine, List, Optional, TypeVar

import structlog
import typer
from rich.console import Console
from rich.table import Table

from trans_relay import __version__
from trans_relay.config import TransRelaySettings
from trans_relay.dispatcher import Dispatcher
from trans_relay.logging_config import setup_logging
from trans_relay.types import TranslationResult

app = typer.Typer(
    name="trans-relay",
    help="带缓存、过滤与速率控制的可插拔翻译调度器。",
    add_completion=False,
)

console = Console()
log = structlog.get_logger("trans_relay.cli")

_T = TypeVar("_T")


class State:
    """在 Typer 上下文中传递共享对象的容器。"""

    settings: TransRelaySettings


def _run(coro: Coroutine[Any, Any, _T]) -> _T:
    return asyncio.run(coro)


def _settings(ctx: typer.Context) -> TransRelaySettings:
    state = ctx.obj
    if isinstance(state, State):
        return state.settings
    return TransRelaySettings()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-V", help="显示版本号并退出。", is_eager=True
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="覆盖日志级别。"),
) -> None:
    """主回调函数，在任何子命令执行前加载配置并初始化日志。"""
    if version:
        console.print(f"Trans-Relay version: [bold green]{__version__}[/bold green]")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()

    settings = TransRelaySettings()
    setup_logging(
        log_level=log_level or settings.logging.level,
        log_format=settings.logging.format,
    )
    ctx.obj = State()
    ctx.obj.settings = settings


def _render_results(results: List[TranslationResult]) -> None:
    table = Table(title="翻译结果")
    table.add_column("原文", overflow="fold")
    table.add_column("译文", overflow="fold")
    table.add_column("状态")
    table.add_column("后端")
    for result in results:
        if not result.success:
            status = f"[red]失败[/red] {result.error_message}"
        elif result.filtered:
            status = "[yellow]已过滤[/yellow]"
        elif result.from_cache:
            status = "[cyan]缓存[/cyan]"
        else:
            status = "[green]成功[/green]"
        table.add_row(result.original_text, result.display_text, status, result.backend or "-")
    console.print(table)


async def _translate_all(
    settings: TransRelaySettings,
    texts: List[str],
    source_lang: Optional[str],
    target_lang: Optional[str],
    backend: Optional[str],
) -> List[TranslationResult]:
    async with Dispatcher.from_settings(settings) as dispatcher:
        return await dispatcher.translate_many(texts, source_lang, target_lang, backend)


@app.command()
def translate(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="要翻译的文本。"),
    source_lang: Optional[str] = typer.Option(None, "--from", "-f", help="源语言代码。"),
    target_lang: Optional[str] = typer.Option(None, "--to", "-t", help="目标语言代码。"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="后端名称。"),
) -> None:
    """翻译一段文本并打印结果。"""
    results = _run(
        _translate_all(_settings(ctx), [text], source_lang, target_lang, backend)
    )
    _render_results(results)
    if not results[0].success:
        raise typer.Exit(code=1)


@app.command()
def batch(
    ctx: typer.Context,
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="每行一段文本的文件。"
    ),
    source_lang: Optional[str] = typer.Option(None, "--from", "-f", help="源语言代码。"),
    target_lang: Optional[str] = typer.Option(None, "--to", "-t", help="目标语言代码。"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="后端名称。"),
) -> None:
    """并发翻译文件中的每一行。"""
    texts = [line for line in file.read_text(encoding="utf-8").splitlines() if line]
    if not texts:
        console.print("[yellow]文件为空，没有需要翻译的内容。[/yellow]")
        raise typer.Exit()
    results = _run(
        _translate_all(_settings(ctx), texts, source_lang, target_lang, backend)
    )
    _render_results(results)
    failed = sum(1 for result in results if not result.success)
    if failed:
        console.print(f"[red]{failed} 条翻译失败。[/red]")
        raise typer.Exit(code=1)


@app.command()
def backends(ctx: typer.Context) -> None:
    """列出根据当前配置可用的后端。"""
    dispatcher = Dispatcher.from_settings(_settings(ctx))
    default_name = dispatcher.registry.default_name
    table = Table(title="翻译后端")
    table.add_column("名称")
    table.add_column("类型")
    table.add_column("可用")
    table.add_column("默认")
    for name in dispatcher.registry.list_names():
        backend = dispatcher.registry.get(name)
        if backend is None:
            continue
        table.add_row(
            name,
            backend.__class__.__name__,
            "是" if backend.is_available else "否",
            "*" if name == default_name else "",
        )
    console.print(table)


@app.command()
def stats(ctx: typer.Context) -> None:
    """显示调度器的配置与健康建议。"""
    dispatcher = Dispatcher.from_settings(_settings(ctx))
    statistics = dispatcher.get_statistics()
    table = Table(title="调度器统计", show_header=False)
    table.add_column("项目", style="dim")
    table.add_column("值")
    for key, value in statistics.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)
    for advice in dispatcher.get_health_advice():
        console.print(f"[yellow]建议:[/yellow] {advice}")


if __name__ == "__main__":
    sys.exit(app())
