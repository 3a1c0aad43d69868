"""Install command implementation."""

import click

from binfetch.commands.common import (
    download_progress,
    load_config,
    open_installer,
    report_batch,
    say,
)


@click.command()
@click.argument("tokens", nargs=-1, required=True)
def install(tokens: tuple[str, ...]):
    """Install one or more binaries.

    Each TOKEN is name[#pkg_id[:version]][@repository], or a direct URL.

    Examples:

        binfetch install bat

        binfetch install curl#curl.upstream.musl

        binfetch install jq#jq.static:1.7.1@bincache
    """
    config = load_config()
    config.ensure_dirs()

    # an index miss for every token surfaces as one combined error
    with download_progress() as progress, open_installer(config, progress) as installer:
        result = installer.install(list(tokens))

    report_batch(result, "Installed", config)
    if result.succeeded:
        say(f"\n[dim]Make sure {config.install_dir} is in your PATH[/dim]", config)
