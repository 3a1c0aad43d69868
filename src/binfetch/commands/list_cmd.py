"""List command implementation."""

import click
from rich.table import Table

from binfetch.commands.common import console, entry_label, load_config, open_installer, say
from binfetch.core.resolver import list_entries


@click.command("list")
@click.option("--repo", "-r", "repos", multiple=True, help="Only list entries from this repository")
@click.option("--installed", "-i", is_flag=True, help="List installed binaries instead")
def list_binaries(repos: tuple[str, ...], installed: bool):
    """List binaries available in the configured repositories."""
    config = load_config()

    with open_installer(config) as installer:
        if installed:
            _list_installed(installer, config)
            return
        entries = list_entries(installer.index, set(repos) or None)

    if not entries:
        say("No binaries found", config)
        return

    for entry in entries:
        say(f"{entry_label(entry)} [dim]@{entry.repository_name}[/dim]", config)


def _list_installed(installer, config) -> None:
    owned = installer.installed()
    if not owned:
        say("No binaries installed", config)
        say("\nInstall binaries with: binfetch install <name>", config)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Binary")
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Repository")
    table.add_column("Installed")

    for path, owner in owned:
        tracked = installer.tracker.get(path.name)
        table.add_row(
            path.name,
            owner.pkg_id or owner.name,
            tracked.version if tracked else "",
            owner.repository_name,
            tracked.installed_at.strftime("%Y-%m-%d %H:%M") if tracked else "",
        )

    console.print(table)
