"""Search command implementation."""

import click
from rich.markup import escape

from binfetch.commands.common import entry_label, fail, load_config, open_installer, say
from binfetch.core.errors import NotFoundError, TooManyResultsError
from binfetch.core.resolver import search as search_index


@click.command()
@click.argument("terms", nargs=-1, required=True)
@click.option("--limit", "-n", type=int, default=None, help="Maximum number of results")
def search(terms: tuple[str, ...], limit: int | None):
    """Search the repository indexes.

    Every TERM must appear in the name, package id or description.
    Installed binaries are marked with [i], cached ones with [c].
    """
    config = load_config()
    limit = limit or config.search_limit

    with open_installer(config) as installer:
        try:
            results = search_index(installer.index, list(terms), limit)
        except (NotFoundError, TooManyResultsError) as e:
            fail(e)
        installed = {owner.identity() for _, owner in installer.installed()}
        cached = {e.identity() for e in results if installer.cached_binary(e) is not None}

    for entry in results:
        if entry.identity() in installed:
            mark = "[green]\\[i][/green]"
        elif entry.identity() in cached:
            mark = "[yellow]\\[c][/yellow]"
        else:
            mark = "[dim]\\[-][/dim]"
        say(f"{mark} {entry_label(entry)} - {escape(entry.description)}", config)
