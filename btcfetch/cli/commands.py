"""CLI commands for btcfetch.

Top-level commands: fetch, tip, encode-hash, plus the config group (show, init).
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from btcfetch import __logo__, __version__
from btcfetch.cli.shared.logging_utils import configure_console_logging, ensure_rotating_log_file
from btcfetch.config.loader import get_config_path, load_config, save_config
from btcfetch.config.schema import Config
from btcfetch.fetcher.encoder import encode_hash, known_hashes_from_record
from btcfetch.fetcher.pipeline import load_record, run_fetch, write_record
from btcfetch.rpc.chain import BitcoinRpc
from btcfetch.rpc.transport import transport_from_config
from btcfetch.utils.exceptions import BtcFetchError, TransportError

app = typer.Typer(
    name="btcfetch",
    help=f"{__logo__} btcfetch - Bitcoin block headers as circuit inputs",
    no_args_is_help=True,
)

console = Console()


def _config_option():
    return typer.Option(None, "--config", "-c", help="Path to config.json (default ~/.btcfetch/config.json)")


def _format_error(exc: Exception) -> tuple[str, str]:
    """Return (rich color, detail) for an error that ended a command."""
    if isinstance(exc, TransportError):
        status = f" status={exc.status_code}" if exc.status_code is not None else ""
        kind = "retryable" if exc.retryable else "non-retryable"
        return ("yellow" if exc.retryable else "red"), f"[{exc.code}]{status} {kind}: {exc.message}"
    if isinstance(exc, BtcFetchError):
        return "red", str(exc)
    return "yellow", str(exc)


def _load(config_path: Path | None, command: str) -> Config:
    try:
        config = load_config(config_path)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    configure_console_logging(config.log.level)
    if config.log.file:
        ensure_rotating_log_file(command, level=config.log.level)
    return config


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} btcfetch v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """btcfetch - Bitcoin block headers as circuit inputs."""


@app.command()
def fetch(
    config_path: Path = _config_option(),
    from_height: int = typer.Option(None, "--from-height", help="First height of the window"),
    max_blocks: int = typer.Option(None, "--max-blocks", help="Window size (at most 800)"),
    output: Path = typer.Option(None, "--output", "-o", help="Artifact path"),
    resume: Path = typer.Option(None, "--resume", help="Previous artifact to continue from"),
    resume_height: int = typer.Option(None, "--resume-height", help="Start height of --resume artifact"),
) -> None:
    """Fetch a window of block hashes and headers and write the JSON artifact."""
    config = _load(config_path, "fetch")
    updates: dict[str, int] = {}
    if from_height is not None:
        updates["from_height"] = from_height
    if max_blocks is not None:
        updates["max_blocks"] = max_blocks
    if updates:
        try:
            config.fetch = config.fetch.model_validate({**config.fetch.model_dump(), **updates})
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e

    known = None
    if resume is None and resume_height is not None:
        raise typer.BadParameter("--resume-height needs --resume")
    if resume is not None:
        if resume_height is None:
            raise typer.BadParameter("--resume needs --resume-height")
        try:
            known = known_hashes_from_record(load_record(resume), resume_height)
        except (OSError, ValueError, KeyError) as e:
            console.print(f"[red]Cannot read {resume}: {e}[/red]")
            raise typer.Exit(1) from e

    try:
        record = asyncio.run(run_fetch(config, known_hashes=known))
    except BtcFetchError as e:
        color, detail = _format_error(e)
        console.print(f"[{color}]Fetch failed:[/{color}] {escape(detail)}")
        raise typer.Exit(1) from e

    path = write_record(record, output or Path(config.output.path))
    console.print(f"[green]✓[/green] Wrote {len(record.block_hashes)} block(s) to [cyan]{path}[/cyan]")


@app.command()
def tip(config_path: Path = _config_option()) -> None:
    """Print the node's current block count."""
    config = _load(config_path, "tip")

    async def _run() -> int:
        async with transport_from_config(config.rpc) as transport:
            return await BitcoinRpc(transport).get_block_count()

    try:
        height = asyncio.run(_run())
    except BtcFetchError as e:
        color, detail = _format_error(e)
        console.print(f"[{color}]{escape(detail)}[/{color}]")
        raise typer.Exit(1) from e
    console.print(str(height))


@app.command("encode-hash")
def encode_hash_command(
    block_hash: str = typer.Argument(..., help="64 hex chars as displayed by the node"),
) -> None:
    """Print the two decimal halves a block hash encodes to."""
    try:
        low, high = encode_hash(block_hash.strip().lower())
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    table = Table(title=block_hash)
    table.add_column("Half")
    table.add_column("Value", style="cyan")
    table.add_row("0", low)
    table.add_row("1", high)
    console.print(table)


config_app = typer.Typer(help="Config helpers (show/init)")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(config_path: Path = _config_option()) -> None:
    """Print the effective config (file + BTCFETCH_* env) as JSON."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    data = config.model_dump()
    if data["rpc"]["api_key"]:
        data["rpc"]["api_key"] = "[REDACTED]"
    console.print_json(json.dumps(data))


@config_app.command("init")
def config_init(
    config_path: Path = _config_option(),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a default config file."""
    path = config_path or get_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow] (use --force to overwrite)")
        raise typer.Exit(1)
    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")
