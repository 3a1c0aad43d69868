"""Config command implementation."""

import click
import yaml

from binfetch.commands.common import fail, load_config, say
from binfetch.core.config import BinfetchConfig
from binfetch.core.errors import ConfigError


@click.command("config")
@click.option("--show", "-s", "show", is_flag=True, help="Print the effective configuration")
@click.option("--new", "-n", "new", is_flag=True, help="Write a default configuration file")
@click.option("--force", is_flag=True, help="Overwrite an existing file with --new")
def config_cmd(show: bool, new: bool, force: bool):
    """Show or create the configuration file."""
    path = BinfetchConfig.default_config_path()

    if new:
        if path.exists() and not force:
            fail(f"{path} already exists (use --force to overwrite)")
        try:
            BinfetchConfig.default().write(path)
        except ConfigError as e:
            fail(e)
        say(f"[green]✓[/green] Wrote default configuration to {path}")
        return

    config = load_config()
    if show:
        click.echo(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False), nl=False)
        return

    state = "exists" if path.exists() else "not created, using defaults"
    say(f"Config file: {path} [dim]({state})[/dim]", config)
