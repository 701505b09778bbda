"""CLI entry point for the `kcy` command."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from key_cypher.core.base import CatalogEntry, TransitionResult
from key_cypher.core.errors import PathNotFound
from key_cypher.core.service import KeyCypher

console = Console()

KIND_STYLES = {
    "file": "cyan",
    "directory": "magenta",
}


def _run_async(coro: Any) -> Any:
    """Run an async coroutine from sync Click commands."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _get_app(ctx: click.Context) -> KeyCypher:
    return KeyCypher.from_config(ctx.obj.get("config"))


def _render_entries(entries: list[CatalogEntry], title: str) -> None:
    if not entries:
        console.print("[green]No entries.[/green]")
        return

    table = Table(title=title)
    table.add_column("Path", style="bold")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Detected by", style="dim")

    for entry in entries:
        style = KIND_STYLES.get(entry.kind.value, "")
        status = "[red]ENCRYPTED[/red]" if entry.encrypted else "[yellow]PLAINTEXT[/yellow]"
        table.add_row(
            entry.path,
            f"[{style}]{entry.kind.value.upper()}[/{style}]",
            status,
            entry.detected_by or "-",
        )
    console.print(table)


def _render_transition(result: TransitionResult) -> None:
    if result.success:
        console.print(
            f"[green]{result.operation.capitalize()}ed[/green] {result.source_path} "
            f"-> [bold]{result.new_path}[/bold]"
        )
        if result.error:
            console.print(f"[yellow]{result.error}[/yellow]")
        return

    console.print(
        f"[red]{result.operation.capitalize()} failed ({result.error_kind}):[/red] {result.error}"
    )
    if result.rollback_error:
        console.print(f"[red]Rollback also failed:[/red] {result.rollback_error}")
    sys.exit(1)


def _resolve_passphrase(passphrase: str | None, confirm: bool) -> str:
    if passphrase:
        return passphrase
    return click.prompt("Passphrase", hide_input=True, confirmation_prompt=confirm)


@click.group()
@click.version_option(package_name="keycypher")
@click.option(
    "--config",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to a config.toml (default: ~/.config/keycypher/config.toml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """kcy: find local secrets, track them and encrypt them at rest."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--stream", is_flag=True, help="Report results detector by detector.")
@click.option("--format", "output_format", type=click.Choice(["rich", "json"]), default="rich")
@click.pass_context
def scan(ctx: click.Context, stream: bool, output_format: str) -> None:
    """Scan the home directory for secrets and add them to the catalog."""
    app = _get_app(ctx)

    if stream:

        async def _run_stream() -> int:
            failures = 0
            async for event in app.scan_background():
                if event.kind == "complete":
                    if event.error:
                        console.print(f"[red]Scan stopped: {event.error}[/red]")
                        return 1
                    console.print(f"\n[bold]{event.total_new} new entries.[/bold]")
                elif event.error:
                    failures += 1
                    console.print(f"[yellow]{event.detector}: failed ({event.error})[/yellow]")
                else:
                    console.print(f"[dim]{event.detector}:[/dim] {len(event.new_entries)} new")
                    for entry in event.new_entries:
                        console.print(f"  [green]+[/green] {entry.path}")
            return 0

        sys.exit(_run_async(_run_stream()))

    report = _run_async(app.scan_once())

    if output_format == "json":
        click.echo(report.model_dump_json(by_alias=True, indent=2))
        return

    console.print(Panel("[bold]Scan Results[/bold]", style="blue"))
    _render_entries(report.new_entries, "New entries")
    for name, error in report.failed_detectors.items():
        console.print(f"[yellow]Detector {name} failed: {error}[/yellow]")
    console.print(f"\n[bold]Catalog size:[/bold] {report.catalog_size}")


@cli.command("list")
@click.option("--format", "output_format", type=click.Choice(["rich", "json"]), default="rich")
@click.pass_context
def list_entries(ctx: click.Context, output_format: str) -> None:
    """Show every catalogued entry."""
    entries = _get_app(ctx).entries()
    if output_format == "json":
        payload = [e.model_dump(mode="json", by_alias=True) for e in entries]
        click.echo(json.dumps(payload, indent=2))
        return
    _render_entries(entries, "Catalog")


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def add(ctx: click.Context, path: Path) -> None:
    """Track a file or directory explicitly."""
    try:
        entry = _get_app(ctx).add_path(path)
    except PathNotFound as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Tracking[/green] {entry.path} ({entry.kind.value})")


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def remove(ctx: click.Context, path: Path) -> None:
    """Stop tracking a path. The file itself is left alone."""
    if _get_app(ctx).remove_entry(path.expanduser().absolute()):
        console.print(f"[green]Removed[/green] {path}")
    else:
        console.print(f"[yellow]{path} is not in the catalog.[/yellow]")


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def status(ctx: click.Context, path: Path) -> None:
    """Check whether a path exists and whether both of its forms exist."""
    report = _get_app(ctx).check_status(path.expanduser().absolute())
    console.print(f"[bold]{report.path}[/bold]")
    console.print(f"  exists:    {'[green]yes[/green]' if report.exists else '[red]no[/red]'}")
    if report.plaintext_path:
        console.print(f"  plaintext: {report.plaintext_path}")
        console.print(f"  encrypted: {report.encrypted_path}")
    if report.conflict:
        console.print(
            "[red]Conflict: both the plaintext and the encrypted form exist. "
            "Remove one before encrypting or decrypting.[/red]"
        )
        sys.exit(1)


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "--passphrase",
    envvar="KCY_PASSPHRASE",
    default=None,
    help="Passphrase (prompted if omitted).",
)
@click.pass_context
def encrypt(ctx: click.Context, path: Path, passphrase: str | None) -> None:
    """Encrypt a file or directory and remove the plaintext."""
    secret = _resolve_passphrase(passphrase, confirm=True)
    _render_transition(_run_async(_get_app(ctx).encrypt(path, secret)))


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "--passphrase",
    envvar="KCY_PASSPHRASE",
    default=None,
    help="Passphrase (prompted if omitted).",
)
@click.pass_context
def decrypt(ctx: click.Context, path: Path, passphrase: str | None) -> None:
    """Decrypt an encrypted artifact and remove the ciphertext."""
    secret = _resolve_passphrase(passphrase, confirm=False)
    _render_transition(_run_async(_get_app(ctx).decrypt(path, secret)))


@cli.command()
@click.option("--encrypt", "encrypt_", is_flag=True, help="Encrypt the backup archive.")
@click.option(
    "--passphrase", envvar="KCY_PASSPHRASE", default=None, help="Passphrase for --encrypt."
)
@click.pass_context
def backup(ctx: click.Context, encrypt_: bool, passphrase: str | None) -> None:
    """Archive every catalogued file plus the catalog itself."""
    secret = _resolve_passphrase(passphrase, confirm=True) if encrypt_ else None
    result = _run_async(_get_app(ctx).create_backup(secret))

    if not result.success:
        console.print(f"[red]Backup failed ({result.error_kind}):[/red] {result.error}")
        sys.exit(1)

    label = "Encrypted backup" if result.encrypted else "Backup"
    console.print(f"[green]{label} written to[/green] {result.archive_path}")
    console.print(f"  {result.members} file(s) archived")
    for skipped in result.skipped:
        console.print(f"  [yellow]skipped {skipped}[/yellow]")
