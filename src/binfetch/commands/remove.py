"""Remove command implementation."""

import click

from binfetch.commands.common import load_config, open_installer, report_batch


@click.command()
@click.argument("tokens", nargs=-1, required=True)
def remove(tokens: tuple[str, ...]):
    """Remove installed binaries.

    Only files installed by binfetch are removed, unless re-owning is
    enabled in the configuration.
    """
    config = load_config()

    with open_installer(config) as installer:
        result = installer.remove(list(tokens))

    report_batch(result, "Removed", config)
