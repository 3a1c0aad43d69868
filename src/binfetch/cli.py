"""CLI entry point for binfetch."""

import click

from binfetch import __version__
from binfetch.commands import config_cmd, info, install, list_cmd, remove, run, search, update
from binfetch.core.config import Verbosity
from binfetch.core.log import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="binfetch")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.option("--silent", "-q", is_flag=True, help="Only show errors")
@click.option("--extra-silent", "-Q", is_flag=True, help="Show nothing at all")
@click.pass_context
def main(ctx: click.Context, verbose: bool, silent: bool, extra_silent: bool):
    """binfetch - fetch static binaries from repository indexes.

    Resolve a name against the configured indexes, download it with
    resume, check its BLAKE3 and signature, and place it on your PATH.

    Examples:

        binfetch install bat

        binfetch install curl#curl.upstream.musl@bincache

        binfetch run jq --version

        binfetch update
    """
    verbosity = Verbosity.NORMAL
    if extra_silent:
        verbosity = Verbosity.EXTRA_SILENT
    elif silent:
        verbosity = Verbosity.SILENT
    elif verbose:
        verbosity = Verbosity.VERBOSE
    ctx.ensure_object(dict)
    ctx.obj["verbosity"] = verbosity
    configure_logging(verbosity)


# Register commands
main.add_command(install.install)
main.add_command(install.install, name="add")
main.add_command(remove.remove)
main.add_command(remove.remove, name="del")
main.add_command(update.update)
main.add_command(list_cmd.list_binaries)
main.add_command(search.search)
main.add_command(info.info)
main.add_command(run.run)
main.add_command(config_cmd.config_cmd)


if __name__ == "__main__":
    main()
