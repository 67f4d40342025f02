"""CLI commands over the repository cache"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from repocache.cli.utils.logging import logger
from repocache.config import ConfigAccessor, resolve_config
from repocache.exceptions import RepoCacheError
from repocache.manifest import RepoType
from repocache.repos import EnsureStatus, RemoveStatus, RepoManager

from .debug import add_debug_option

ENSURE_HEADINGS = {
    EnsureStatus.cached: "Repository already available",
    EnsureStatus.reused: "Repository cache repaired",
    EnsureStatus.cloned: "Repository cloned",
}


def get_manager(ctx: click.Context) -> RepoManager:
    """Build the manager once per invocation from the resolved configuration."""
    root_ctx = ctx.find_root()
    root_ctx.ensure_object(dict)
    manager = root_ctx.obj.get("MANAGER")
    if manager is None:
        config_path: Optional[str] = root_ctx.obj.get("CONFIG_PATH")
        accessor = ConfigAccessor(Path(config_path) if config_path else None)
        manager = RepoManager(resolve_config(accessor, project_directory=Path.cwd()))
        root_ctx.obj["MANAGER"] = manager
    return manager


def fail(message: str):
    logger.error(message)
    sys.exit(1)


@add_debug_option
@click.command("clone")
@click.argument("spec")
@click.option("--force", is_flag=True, help="Delete and re-clone the cached checkout.")
@click.pass_context
def clone(ctx, spec: str, force: bool):
    """Clone SPEC (owner/repo[@branch]) into the cache, or reuse the cached copy."""
    manager = get_manager(ctx)
    try:
        result = manager.ensure_available(spec, force=force)
    except RepoCacheError as e:
        fail(f"Failed to prepare {spec}: {e}")

    click.echo(ENSURE_HEADINGS[result.status])
    click.echo(f"  branch: {result.branch}")
    click.echo(f"  type:   {result.type.value}")
    click.echo(f"  path:   {result.path}")


@add_debug_option
@click.command("list")
@click.option(
    "--type",
    "repo_type",
    type=click.Choice(["all", "cached", "local"]),
    default="all",
    show_default=True,
    help="Filter by repository type.",
)
@click.pass_context
def list_repos(ctx, repo_type: str):
    """List repositories registered in the manifest."""
    manager = get_manager(ctx)
    entries = manager.list_repos(None if repo_type == "all" else RepoType(repo_type))
    if not entries:
        click.echo("No repositories registered")
        return

    for key, entry in entries:
        click.echo(
            f"{key}\t{entry.type.value}\t{entry.current_branch}\t"
            f"{entry.last_accessed}\t{entry.path}"
        )


@add_debug_option
@click.command("update")
@click.argument("spec")
@click.pass_context
def update(ctx, spec: str):
    """Fetch and reset a cached repository (or show status of a local one)."""
    manager = get_manager(ctx)
    try:
        result = manager.update(spec)
    except RepoCacheError as e:
        fail(f"Update failed: {e}")

    if result.type == RepoType.local:
        click.echo(f"Local repository at {result.path}")
        click.echo(result.status or "Working tree clean")
        return

    click.echo("Repository updated")
    click.echo(f"  branch: {result.branch}")
    click.echo(f"  commit: {(result.commit or '')[:7]}")
    click.echo(f"  path:   {result.path}")


@add_debug_option
@click.command("remove")
@click.argument("spec")
@click.option("--confirm", is_flag=True, help="Required to delete cached files from disk.")
@click.pass_context
def remove(ctx, spec: str, confirm: bool):
    """Unregister a repository; cached checkouts are deleted with --confirm."""
    manager = get_manager(ctx)
    try:
        result = manager.remove(spec, confirm=confirm)
    except RepoCacheError as e:
        fail(f"Remove failed: {e}")

    if result.status == RemoveStatus.not_found:
        fail(f"{result.repo_key} is not registered")
    elif result.status == RemoveStatus.unregistered:
        click.echo(f"Unregistered {result.repo_key}; files at {result.path} were kept")
    elif result.status == RemoveStatus.confirmation_required:
        click.echo(f"{result.repo_key} is cached at {result.path}")
        click.echo(f"Run `repocache remove {result.repo_key} --confirm` to delete it.")
        sys.exit(2)
    else:
        click.echo(f"Removed {result.repo_key} ({result.path})")


@add_debug_option
@click.command("scan")
@click.argument("paths", nargs=-1, type=click.Path(file_okay=False))
@click.pass_context
def scan(ctx, paths: Tuple[str, ...]):
    """Register git checkouts found under PATHS (default: configured search paths)."""
    manager = get_manager(ctx)
    try:
        summary = manager.scan(paths or None)
    except RepoCacheError as e:
        fail(f"Scan failed: {e}")

    if not summary.search_paths:
        fail(
            "No search paths configured. Set [scan] paths in the config file "
            "or pass paths to `repocache scan`."
        )

    click.echo(f"Search paths:        {len(summary.search_paths)}")
    click.echo(f"Repositories found:  {summary.found}")
    click.echo(f"Added/updated:       {summary.added}")
    click.echo(f"Skipped:             {summary.skipped}")


@add_debug_option
@click.command("find")
@click.argument("query")
@click.pass_context
def find(ctx, query: str):
    """Find repositories by name among registered and local checkouts."""
    manager = get_manager(ctx)
    result = manager.find(query)

    if not result.registered and not result.local:
        click.echo("No matches found.")
        return

    for key, entry in result.registered:
        click.echo(f"registered\t{key}\t{entry.type.value}\t{entry.current_branch}\t{entry.path}")
    for repo in result.local:
        click.echo(f"local\t{repo.key}\t{repo.branch}\t{repo.path}")


@add_debug_option
@click.command("read")
@click.argument("spec")
@click.argument("path")
@click.option(
    "--max-lines",
    type=click.IntRange(min=1),
    default=500,
    show_default=True,
    help="Lines shown per file.",
)
@click.pass_context
def read(ctx, spec: str, path: str, max_lines: int):
    """Print files matching PATH (a path or glob) from the repository SPEC."""
    manager = get_manager(ctx)
    try:
        result = manager.read(spec, path, max_lines=max_lines)
    except RepoCacheError as e:
        fail(f"Read failed: {e}")

    if not result.files:
        click.echo(f"No files matched {path} in {result.repo_key}")
        return

    click.echo(f"Files from {result.repo_key} @ {result.branch}")
    for file in result.files:
        click.echo(f"\n==> {file.path} <==")
        if file.error:
            click.echo(f"[error: {file.error}]")
            continue
        for line in file.lines:
            click.echo(line)
        if file.truncated:
            click.echo(f"[truncated at {len(file.lines)} lines, {file.total_lines} total]")
