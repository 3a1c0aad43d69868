"""Info command implementation."""

import click
from rich.markup import escape
from rich.panel import Panel

from binfetch.commands.common import console, fail, load_config, open_installer, say
from binfetch.core.errors import NotFoundError
from binfetch.core.resolver import resolve
from binfetch.models.entry import Entry


@click.command()
@click.argument("token", required=False)
def info(token: str | None):
    """Show detailed information about a binary.

    Without TOKEN, summarize what is installed.
    """
    config = load_config()

    with open_installer(config) as installer:
        if token is None:
            owned = installer.installed()
            for path, owner in owned:
                tracked = installer.tracker.get(path.name)
                version = f" [bright_black]{tracked.version}[/bright_black]" if tracked else ""
                say(f"{path.name} [dim]{owner.to_token()}[/dim]{version}", config)
            say(f"\nInstalled: {len(owned)} in {config.install_dir}", config)
            return

        try:
            entry = resolve(Entry.parse(token), installer.index)
        except NotFoundError as e:
            fail(e)
        tracked = installer.tracker.get(entry.base_name)

    lines = [
        f"[bold]Name:[/bold] {entry.name}",
        f"[bold]Package:[/bold] {entry.pkg_id or entry.pretty_name}",
        f"[bold]Repository:[/bold] {entry.repository_name}",
        f"[bold]Version:[/bold] {entry.version}",
        f"[bold]Description:[/bold] {escape(entry.description)}",
        f"[bold]Download:[/bold] {entry.download_url}",
        f"[bold]Size:[/bold] {entry.size}",
        f"[bold]BLAKE3:[/bold] {entry.content_hash}",
    ]
    if entry.build_date:
        lines.append(f"[bold]Built:[/bold] {entry.build_date}")
    if entry.license:
        lines.append(f"[bold]License:[/bold] {', '.join(entry.license)}")
    if entry.categories:
        lines.append(f"[bold]Categories:[/bold] {entry.categories}")
    if entry.web_urls:
        lines.append(f"[bold]Web:[/bold] {', '.join(entry.web_urls)}")
    if entry.source_urls:
        lines.append(f"[bold]Source:[/bold] {', '.join(entry.source_urls)}")
    if entry.snapshots:
        snapshots = ", ".join(s.version or s.commit for s in entry.snapshots[:5])
        lines.append(f"[bold]Snapshots:[/bold] {snapshots}")
    if entry.notes:
        lines.append(f"[bold]Notes:[/bold] {escape(' '.join(entry.notes))}")

    title = f"[green]{entry.name}[/green]"
    if tracked is not None:
        title += " (installed)"
        lines.append(
            f"[bold]Installed:[/bold] {tracked.version} "
            f"on {tracked.installed_at.strftime('%Y-%m-%d %H:%M')}"
        )
    console.print(Panel("\n".join(lines), title=title))
