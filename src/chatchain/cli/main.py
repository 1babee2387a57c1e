"""
CLI for chatchain.

Commands:
    chatchain run - Start the Telegram bot
    chatchain config - Show current configuration
    chatchain inspect CHAT_ID - Show what is stored for a chat
    chatchain version - Print version
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chatchain import __version__
from chatchain.config import Settings, clear_settings_cache, get_settings
from chatchain.exceptions import ChatChainError, ConfigurationError

app = typer.Typer(
    name="chatchain",
    help="chatchain - a Telegram bot that learns to talk like your chat",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'chatchain config' to see what's missing."
        )
        raise typer.Exit(1)
    return settings


async def _run_bot(settings: Settings) -> int:
    from chatchain.bot import BotRunner, TelegramClient
    from chatchain.conversation import ModelCache
    from chatchain.storage import create_blob_store

    if not settings.TELEGRAM_BOT_TOKEN:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN not set")

    store = create_blob_store(settings)
    await store.init()
    client = TelegramClient(settings.TELEGRAM_BOT_TOKEN)
    cache = ModelCache(store, idle_threshold=settings.idle_threshold)
    runner = BotRunner(
        client,
        cache,
        prune_interval=settings.prune_interval,
        poll_timeout=settings.POLL_TIMEOUT_SECONDS,
        max_concurrent_handlers=settings.MAX_CONCURRENT_HANDLERS,
    )
    runner.install_signal_handlers()

    try:
        return await runner.run()
    finally:
        await client.close()
        await store.close()


@app.command()
def run() -> None:
    """Start the bot and poll Telegram until interrupted.

    Conversations are written to the blob store when they go idle and once
    more on shutdown (SIGINT/SIGTERM).
    """
    settings = _require_settings()

    from chatchain.logging import setup_logging

    setup_logging(settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    settings.ensure_directories()

    console.print(
        Panel(
            f"[bold]Backend:[/bold] {settings.BLOB_BACKEND}\n"
            f"[bold]Idle threshold:[/bold] {settings.IDLE_THRESHOLD_MINUTES:g} min\n"
            f"[bold]Prune interval:[/bold] {settings.PRUNE_INTERVAL_MINUTES:g} min",
            title="[bold cyan]chatchain[/bold cyan]",
            border_style="cyan",
        )
    )

    try:
        failures = asyncio.run(_run_bot(settings))
    except ConfigurationError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if failures:
        error_console.print(
            f"[yellow]Warning:[/yellow] {failures} conversation(s) could not be saved on shutdown."
        )
        raise typer.Exit(2)


@app.command()
def config() -> None:
    """Show current configuration with secrets redacted."""
    console.print()
    console.print("[bold]chatchain Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Environment variables:")
        error_console.print("  - TELEGRAM_BOT_TOKEN (required to run the bot)")
        error_console.print("  - BLOB_BACKEND=gdrive needs GDRIVE_CREDENTIALS and CHAINDUMP_DIR")
        error_console.print("  - GDRIVE_CREDENTIALS must be base64-encoded JSON")
        error_console.print()
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


async def _inspect(settings: Settings, chat_id: int) -> dict[str, object] | None:
    from chatchain.conversation import ConversationEntry
    from chatchain.storage import create_blob_store

    store = create_blob_store(settings)
    await store.init()
    try:
        data = await store.get(str(chat_id))
        if data is None:
            return None
        entry = ConversationEntry.from_bytes(data, store, chat_id=chat_id)
        return {
            "chat_id": entry.chat_id,
            "is_learning": entry.is_learning,
            "last_accessed": entry.last_accessed.isoformat(),
            "size_bytes": len(data),
            **entry.chain.stats(),
        }
    finally:
        await store.close()


@app.command()
def inspect(
    chat_id: Annotated[int, typer.Argument(help="Telegram chat id")],
) -> None:
    """Show the stored model summary for a chat."""
    settings = _require_settings()

    try:
        summary = asyncio.run(_inspect(settings, chat_id))
    except ChatChainError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if summary is None:
        console.print(f"[yellow]Nothing stored for chat {chat_id}.[/yellow]")
        return

    table = Table(title=f"Chat {chat_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in summary.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"chatchain version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
