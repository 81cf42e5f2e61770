"""
CLI 命令模块 - relaybot 的所有命令行命令定义。

本模块使用 Typer 框架定义 relaybot 的 CLI 命令体系：
- onboard：生成默认配置文件
- run：启动网关客户端（会话引导 + 连接监督 + 事件路由 + 签名任务）
- status：查看配置与本地会话状态
- session check / import / purge：凭据字符串检查、导入与本地会话清理

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出
- loguru：运行日志
"""

import asyncio
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from relaybot import __logo__, __version__

app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} relaybot - messaging gateway client",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} relaybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """relaybot - messaging gateway client."""
    pass


def _setup_logging(verbose: bool) -> None:
    """重新配置 loguru 的 stderr 输出级别。"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load(config_path: Path | None):
    from relaybot.config.loader import load_config
    return load_config(config_path)


def _make_decoder(config):
    from relaybot.session.credentials import CredentialDecoder
    from relaybot.session.sources import PasteService, RemoteBlobStore

    s = config.session
    return CredentialDecoder(
        blob_store=RemoteBlobStore(s.mega_api_url, timeout=s.fetch_timeout),
        paste_service=PasteService(s.paste_url, timeout=s.fetch_timeout),
        remote_marker=s.remote_marker,
        paste_marker=s.paste_marker,
    )


# ============================================================================
# Onboard
# ============================================================================


@app.command()
def onboard():
    """生成默认配置文件 ~/.relaybot/config.json。"""
    from relaybot.config.loader import get_config_path, save_config
    from relaybot.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext steps:")
    console.print("  1. Set [cyan]session.sessionId[/cyan] (or RELAYBOT_SESSION__SESSION_ID)")
    console.print("  2. Start the gateway bridge and run: [cyan]relaybot run[/cyan]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """
    启动网关客户端（核心启动命令）。

    编排流程：
    1. 加载配置，准备本地会话（已有会话 → 凭据解码 → 扫码配对）
    2. 创建事件路由器并注册内置处理器
    3. 创建签名服务、上线通告与连接监督器
    4. 运行监督器直到终止，以其退出码退出
    """
    from relaybot.bus.router import EventRouter
    from relaybot.errors import DecodeError
    from relaybot.gateway.announce import Announcer
    from relaybot.gateway.bridge import BridgeGateway
    from relaybot.gateway.supervisor import ConnectionSupervisor, ReconnectPolicy
    from relaybot.handlers import default_handlers, register_all
    from relaybot.heartbeat.service import StatusService
    from relaybot.session.bootstrap import bootstrap_session
    from relaybot.session.store import SessionStore

    _setup_logging(verbose)
    config = _load(config_path)
    console.print(f"{__logo__} Starting relaybot (bridge {config.gateway.bridge_url})...")

    store = SessionStore(config.session_path)
    router = EventRouter()
    status_service = StatusService(
        bot_name=config.bot.name,
        time_zone=config.bot.time_zone,
        interval_s=config.status.interval_s,
        enabled=config.status.enabled,
    )

    async def main_loop() -> int:
        try:
            print_qr = await bootstrap_session(store, _make_decoder(config), config.session.session_id)
        except (DecodeError, OSError) as e:
            logger.error(f"Could not prepare session: {e}")
            return 1

        supervisor = ConnectionSupervisor(
            gateway=BridgeGateway(config.gateway),
            store=store,
            router=router,
            status_service=status_service,
            announcer=Announcer(config),
            policy=ReconnectPolicy.from_config(config.reconnect),
            print_qr=print_qr,
        )
        register_all(router, default_handlers(config, supervisor.current))

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.create_task(supervisor.stop()))
            except NotImplementedError:
                pass  # Windows 事件循环不支持信号处理器

        code = await supervisor.run()
        await router.drain()
        return code

    try:
        code = asyncio.run(main_loop())
    except KeyboardInterrupt:
        console.print("\nShutting down...")
        code = 0
    raise typer.Exit(code)


# ============================================================================
# Session Commands
# ============================================================================


session_app = typer.Typer(help="Manage the local session")
app.add_typer(session_app, name="session")


@session_app.command("check")
def session_check(
    session_id: str = typer.Argument(None, help="Session id (defaults to the configured one)"),
    fetch: bool = typer.Option(False, "--fetch", help="Also download/decode the payload"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """检查凭据字符串的编码方案（可选拉取并解码）。"""
    from relaybot.errors import DecodeError

    config = _load(config_path)
    decoder = _make_decoder(config)
    value = session_id if session_id is not None else config.session.session_id

    try:
        source = decoder.classify(value)
        console.print(f"Scheme: [cyan]{source.scheme.value}[/cyan]")
        if source.key is not None:
            console.print(f"Object: {source.reference}")
        if fetch:
            credential = asyncio.run(decoder.decode(value))
            console.print(f"[green]✓[/green] Decoded {len(credential.payload)} bytes")
    except DecodeError as e:
        console.print(f"[red]{e.__class__.__name__}: {e}[/red]")
        raise typer.Exit(1)


@session_app.command("import")
def session_import(
    session_id: str = typer.Argument(None, help="Session id (defaults to the configured one)"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing local session"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """解码凭据字符串并写入本地会话目录。"""
    from relaybot.errors import DecodeError
    from relaybot.session.store import SessionStore

    config = _load(config_path)
    store = SessionStore(config.session_path)
    if store.exists() and not force:
        console.print(f"[yellow]Session already exists at {store.session_dir} (use --force)[/yellow]")
        raise typer.Exit(1)

    value = session_id if session_id is not None else config.session.session_id
    try:
        credential = asyncio.run(_make_decoder(config).decode(value))
    except DecodeError as e:
        console.print(f"[red]{e.__class__.__name__}: {e}[/red]")
        raise typer.Exit(1)

    store.persist(credential.payload)
    console.print(f"[green]✓[/green] Session saved to {store.creds_path}")


@session_app.command("purge")
def session_purge(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """删除本地会话目录（下次启动将重新引导）。"""
    from relaybot.session.store import SessionStore

    config = _load(config_path)
    store = SessionStore(config.session_path)
    if not yes and not typer.confirm(f"Delete {store.session_dir}?"):
        raise typer.Exit()
    if store.purge():
        console.print(f"[green]✓[/green] Removed {store.session_dir}")
    else:
        console.print(f"[dim]No session at {store.session_dir}[/dim]")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file path"),
):
    """显示配置与本地会话状态。"""
    from relaybot.config.loader import get_config_path
    from relaybot.session.store import SessionStore

    path = config_path or get_config_path()
    config = _load(config_path)
    store = SessionStore(config.session_path)

    console.print(f"{__logo__} relaybot Status\n")

    table = Table(show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    table.add_row("Config", f"{path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")
    table.add_row("Session", f"{store.session_dir} {'[green]✓[/green]' if store.exists() else '[dim]not found[/dim]'}")
    table.add_row("Session id", "[green]set[/green]" if config.session.session_id else "[dim]not set[/dim]")
    table.add_row("Bridge", config.gateway.bridge_url)
    table.add_row("Mode", "public" if config.is_public else "private")
    table.add_row("Time zone", config.bot.time_zone)
    max_attempts = config.reconnect.max_attempts or "unlimited"
    table.add_row("Reconnect", f"{config.reconnect.base_delay_s}s → {config.reconnect.max_delay_s}s, attempts {max_attempts}")
    console.print(table)


if __name__ == "__main__":
    app()
