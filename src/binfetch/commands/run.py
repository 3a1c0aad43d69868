"""Run command implementation."""

import click

from binfetch.commands.common import download_progress, load_config, open_installer


@click.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.option("--transparent", "-t", is_flag=True, help="Prefer a binary already on PATH")
@click.argument("token")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run(transparent: bool, token: str, args: tuple[str, ...]):
    """Run a binary without installing it.

    The binary is fetched into the cache on first use; arguments after
    TOKEN are passed through unchanged.
    """
    config = load_config()
    config.ensure_dirs()

    with download_progress() as progress, open_installer(config, progress) as installer:
        code = installer.run(token, list(args), transparent=transparent)

    raise SystemExit(code)
