"""repocache CLI"""

import click

from repocache import __version__
from repocache.cli.repos import clone, find, list_repos, read, remove, scan, update

from .debug import add_debug_option


@click.group()
@click.version_option(__version__, prog_name="repocache")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="REPOCACHE_CONFIG",
    help="Configuration file (defaults to the user config directory).",
)
@click.pass_context
def cli(ctx, config_path):
    """
    Local cache of shallow git checkouts for coding agents.
    """
    ctx.ensure_object(dict)
    ctx.obj["CONFIG_PATH"] = config_path


cli.add_command(clone)
cli.add_command(list_repos)
cli.add_command(update)
cli.add_command(remove)
cli.add_command(scan)
cli.add_command(find)
cli.add_command(read)

add_debug_option(cli)

if __name__ == "__main__":
    cli(obj={})
