"""
vtrace.cli — Command-line interface for vtrace.

Usage:
    vtrace version [PATH]          Print the version resolved for HEAD
    vtrace metadata [PATH]         Show version, tags, branches and commit details
    vtrace tags [PATH]             Load or build the tag cache and show its contents
    vtrace cache-clean             Remove tag-cache files older than the retention window
    vtrace cache-invalidate [PATH] Drop the tag cache of one repository
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from vtrace import __version__

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _get_config(**overrides):
    from vtrace.core.models import VtraceConfig
    return VtraceConfig.load(**overrides)


@click.group()
@click.version_option(__version__, prog_name="vtrace")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Tag-cache directory (default: user cache dir).")
@click.pass_context
def main(ctx: click.Context, verbose: bool, cache_dir: Path | None) -> None:
    """vtrace — version numbers traced from Git history."""
    _setup_logging(verbose)
    ctx.obj = _get_config(cache_dir=cache_dir)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------

@main.command()
@click.argument("path", default=".", type=click.Path(exists=True, path_type=Path))
@click.option("--commit", default=None, help="Commit to resolve (default: HEAD).")
@click.option("--no-working-tree", "no_working_tree", is_flag=True,
              help="Don't bump the version for uncommitted changes.")
@click.pass_obj
def version(config, path: Path, commit: str | None, no_working_tree: bool) -> None:
    """Print the version resolved for a commit."""
    from vtrace.operations.engine import resolve_version

    check = False if no_working_tree else config.check_working_tree
    resolved = asyncio.run(resolve_version(path, commit, check, config))
    if resolved is None:
        err_console.print(f"[red]✗[/red] No version metadata for {path}")
        sys.exit(1)
    click.echo(str(resolved))


# ---------------------------------------------------------------------------
# metadata
# ---------------------------------------------------------------------------

@main.command()
@click.argument("path", default=".", type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
@click.option("--no-working-tree", "no_working_tree", is_flag=True,
              help="Don't bump the version for uncommitted changes.")
@click.pass_obj
def metadata(config, path: Path, as_json: bool, no_working_tree: bool) -> None:
    """Show version, tags, branches and commit details for HEAD."""
    from vtrace.operations.engine import get_git_metadata

    check = False if no_working_tree else config.check_working_tree
    meta = asyncio.run(get_git_metadata(path, check, config))
    if meta is None:
        err_console.print(f"[red]✗[/red] No version metadata for {path}")
        sys.exit(1)

    if as_json:
        click.echo(meta.model_dump_json(indent=2, exclude={"has_version"}))
        return

    table = Table(title="Git Metadata")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Version", meta.version or "—")
    table.add_row("Tags", ", ".join(meta.tags) or "—")
    table.add_row("Branches", ", ".join(meta.branches) or "—")
    if meta.commit:
        table.add_row("Commit", meta.commit.hash)
        table.add_row("Date", meta.commit.date)
        table.add_row("Message", meta.commit.message.splitlines()[0] if meta.commit.message else "")
    console.print(table)


# ---------------------------------------------------------------------------
# tags
# ---------------------------------------------------------------------------

@main.command()
@click.argument("path", default=".", type=click.Path(exists=True, path_type=Path))
@click.pass_obj
def tags(config, path: Path) -> None:
    """Load or build the tag cache and show per-commit tags."""
    from vtrace.cache.manager import load_or_build_tag_cache
    from vtrace.core.errors import CacheWriteError
    from vtrace.vcs.repository import GitRepository

    repository = asyncio.run(GitRepository.discover(path, timeout=config.git_timeout))
    if repository is None:
        err_console.print(f"[red]✗[/red] Not inside a Git repository: {path}")
        sys.exit(1)

    try:
        result = asyncio.run(load_or_build_tag_cache(repository.root, config))
    except CacheWriteError as e:
        err_console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    s = result.stats
    console.print(
        f"[green]✓[/green] {s.total_tags} tags "
        f"([cyan]+{s.added}[/cyan] [red]-{s.deleted}[/red] [yellow]~{s.modified}[/yellow] "
        f"={s.unchanged}) in {s.update_time_ms:.1f}ms"
        + (" [dim](full rebuild)[/dim]" if s.full_rebuild else "")
    )

    table = Table(title="Tags by Commit")
    table.add_column("Commit", style="yellow", width=12)
    table.add_column("Tags")
    for commit_hash, tag_infos in sorted(result.cache.items()):
        table.add_row(commit_hash[:12], ", ".join(t.name for t in tag_infos))
    console.print(table)


# ---------------------------------------------------------------------------
# cache maintenance
# ---------------------------------------------------------------------------

@main.command("cache-clean")
@click.option("--max-age-hours", type=float, default=None,
              help="Remove files older than this (default: retention window).")
@click.pass_obj
def cache_clean(config, max_age_hours: float | None) -> None:
    """Remove stale tag-cache files."""
    from vtrace.cache.store import TagCacheStore

    hours = config.cache_retention_hours if max_age_hours is None else max_age_hours
    removed = TagCacheStore(config.cache_dir).cleanup_stale(hours * 60 * 60 * 1000)
    console.print(f"[green]✓[/green] Removed {removed} cache file(s) from [bold]{config.cache_dir}[/bold]")


@main.command("cache-invalidate")
@click.argument("path", default=".", type=click.Path(exists=True, path_type=Path))
@click.pass_obj
def cache_invalidate(config, path: Path) -> None:
    """Drop the tag cache of one repository (rebuilt on next use)."""
    from vtrace.cache.store import TagCacheStore
    from vtrace.vcs.repository import GitRepository

    repository = asyncio.run(GitRepository.discover(path, timeout=config.git_timeout))
    root = repository.root if repository else path
    if TagCacheStore(config.cache_dir).invalidate(root):
        console.print(f"[green]✓[/green] Invalidated tag cache for [bold]{root}[/bold]")
    else:
        console.print(f"[dim]No tag cache for {root}[/dim]")


if __name__ == "__main__":
    main()
