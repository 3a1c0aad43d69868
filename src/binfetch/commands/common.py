"""Helpers shared by the command implementations."""

from contextlib import contextmanager
from typing import Iterator

import click
import httpx
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from binfetch import __version__
from binfetch.core.config import BinfetchConfig, Verbosity, get_config
from binfetch.core.errors import BinfetchError
from binfetch.core.installer import BatchResult, Installer
from binfetch.models.entry import Entry

console = Console()
err_console = Console(stderr=True)


def verbosity() -> Verbosity:
    ctx = click.get_current_context(silent=True)
    if ctx is None or ctx.obj is None:
        return Verbosity.NORMAL
    return ctx.obj.get("verbosity", Verbosity.NORMAL)


def load_config() -> BinfetchConfig:
    """The process configuration, exiting with a message if it is broken."""
    try:
        config = get_config()
    except BinfetchError as e:
        fail(e)
    config.verbosity = verbosity()
    return config


def say(message: str, config: BinfetchConfig | None = None) -> None:
    """Print a normal-verbosity line, cropped to the terminal unless disabled."""
    if verbosity() < Verbosity.NORMAL:
        return
    crop = config is None or not config.disable_truncation
    console.print(message, no_wrap=crop, overflow="ellipsis" if crop else "fold")


def warn(message: str) -> None:
    if verbosity() >= Verbosity.NORMAL:
        err_console.print(f"[yellow]Warning:[/yellow] {message}")


def error(message) -> None:
    if verbosity() > Verbosity.EXTRA_SILENT:
        err_console.print(f"[red]Error:[/red] {message}")


def fail(message) -> None:
    error(message)
    raise SystemExit(1)


def entry_label(entry: Entry) -> str:
    """An entry token with the package id highlighted."""
    label = entry.name
    if entry.pkg_id:
        label += f"[bright_blue]#{entry.pkg_id}[/bright_blue]"
    if entry.version:
        label += f" [bright_black]{entry.version}[/bright_black]"
    return label


def download_progress() -> Progress:
    return Progress(
        "[progress.description]{task.description}",
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=err_console,
        disable=verbosity() < Verbosity.NORMAL,
        transient=verbosity() < Verbosity.VERBOSE,
    )


@contextmanager
def open_installer(config: BinfetchConfig, progress: Progress | None = None) -> Iterator[Installer]:
    """An Installer over a shared HTTP client; the tracker is saved on exit."""
    with httpx.Client(
        headers={"User-Agent": f"binfetch/{__version__}"},
        timeout=httpx.Timeout(60.0, connect=15.0),
    ) as client:
        try:
            with Installer(config, client, progress=progress) as installer:
                yield installer
        except BinfetchError as e:
            fail(e)


def report_batch(result: BatchResult, done: str, config: BinfetchConfig) -> None:
    """Print per-item outcomes; exit non-zero if any item failed."""
    for item in result.items:
        if item.warning:
            warn(f"{item.token}: {item.warning}")
        if item.path is not None:
            label = entry_label(item.entry) if item.entry else item.token
            say(f"[green]✓[/green] {done} {label} [dim]({item.path})[/dim]", config)

    if result.failed:
        for item in result.failed:
            error(f"{item.token}: {item.error}")
        raise SystemExit(1)
