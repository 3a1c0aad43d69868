"""Update command implementation."""

import click

from binfetch.commands.common import (
    download_progress,
    load_config,
    open_installer,
    report_batch,
    say,
)


@click.command()
@click.argument("tokens", nargs=-1)
@click.option("--check", "-c", is_flag=True, help="Only list binaries that differ from the index")
def update(tokens: tuple[str, ...], check: bool):
    """Update installed binaries whose content differs from the index.

    Without TOKENS every binary installed by binfetch is checked.
    """
    config = load_config()
    config.ensure_dirs()

    with download_progress() as progress, open_installer(config, progress) as installer:
        if check:
            outdated = installer.outdated(list(tokens) or None)
            if not outdated.entries:
                say("[green]All binaries are up to date[/green]", config)
            for path, entry in outdated.entries:
                click.echo(f"{path.name}\t{entry.to_token(with_version=True)}")
            return

        report = installer.update(list(tokens) or None)

    if not report.result.items:
        say("[green]All binaries are up to date[/green]", config)
    report_batch(report.result, "Updated", config)
    say(
        f"\nSkipped: {report.skipped}\tUpdated: {report.updated}\tChecked: {report.checked}",
        config,
    )
