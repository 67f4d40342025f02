import click

from .utils.logging import configure_logging


def add_debug_option(cmd: click.Command) -> click.Command:
    """Give a command (or group) a ``--debug/--no-debug`` flag that configures logging."""
    if not any(param.name == "debug" for param in cmd.params):
        cmd.params.insert(
            0,
            click.Option(
                ["--debug/--no-debug"],
                is_eager=True,
                expose_value=False,
                callback=_set_debug,
                help="Enable debug mode",
            ),
        )
    return cmd


def _set_debug(ctx: click.Context, param, value: bool) -> bool:
    """
    Record the flag on the root context.

    ``--debug`` wins from any level; ``--no-debug`` only counts on the root command,
    so ``repocache --debug clone ...`` stays in debug mode.
    """
    root_ctx = ctx.find_root()
    root_ctx.ensure_object(dict)
    root_ctx.obj.setdefault("DEBUG", False)

    if value or ctx is root_ctx:
        root_ctx.obj["DEBUG"] = value

    configure_logging(root_ctx.obj["DEBUG"])
    return root_ctx.obj["DEBUG"]
