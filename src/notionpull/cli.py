"""Command-line interface for notionpull."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from . import __version__
from .core.syncer import Syncer
from .exceptions import ConfigError
from .logging_config import setup_logging
from .models.config import NotionpullConfig, dedupe_pages, load_config
from .models.events import EventType


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="notionpull",
        description="Incrementally mirror Notion pages, their sub-pages and attachments to disk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mirror a page tree (token from NOTION_API_KEY)
  notionpull 1429989fe8ac4effbc8f57f56486db54

  # Several roots, all attachment types, custom output directory
  notionpull https://www.notion.so/Wiki-8c0f1e4b2d9a4c7e9f3b5a6d7e8f9a0b <id> \\
      --attachments all -o ./backup

  # Use a config file and force a full re-sync
  notionpull --config notionpull.yaml --no-cache
        """,
    )

    parser.add_argument(
        "pages",
        nargs="*",
        metavar="PAGE",
        help="Page ids or Notion URLs (added to pages from the config file)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="YAML config file (default: notionpull.yaml in this or a parent directory)",
    )

    # Output
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=None,
        help="Output directory (default: ./build/meta)",
    )

    # Sync settings
    sync_group = parser.add_argument_group("sync settings")
    sync_group.add_argument(
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Descend into child pages (default: yes)",
    )
    sync_group.add_argument(
        "--attachments",
        choices=["none", "images", "all"],
        default=None,
        help="Attachments to download (default: images)",
    )
    sync_group.add_argument(
        "--concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Sibling pages processed together; 0 for serial (default: 5)",
    )
    sync_group.add_argument(
        "--root-concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Root pages synced together (default: 1)",
    )
    sync_group.add_argument(
        "--pool",
        action="store_true",
        help="Use a refilling worker pool instead of fixed batches",
    )
    sync_group.add_argument(
        "--isolate-failures",
        action="store_true",
        help="Keep syncing sibling pages when one of them fails",
    )

    # Cache settings
    cache_group = parser.add_argument_group("cache settings")
    cache_group.add_argument(
        "--no-cache",
        action="store_true",
        help="Re-fetch and rewrite every page",
    )

    # Network settings
    network_group = parser.add_argument_group("network settings")
    network_group.add_argument(
        "--proxy",
        type=str,
        metavar="URL",
        help="Proxy URL",
    )
    network_group.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Maximum retry attempts for API requests",
    )

    # Output control
    output_group = parser.add_argument_group("output control")
    output_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )
    output_group.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress output",
    )

    return parser


def build_config(args: argparse.Namespace) -> NotionpullConfig:
    """
    Merge the config file (if any) with command-line overrides.

    Raises:
        ConfigError: If the file or the merged values are invalid
    """
    base = load_config(args.config)
    data: dict[str, Any] = base.model_dump()

    if args.pages:
        data["pages"] = dedupe_pages(list(data.get("pages") or []) + list(args.pages))

    if args.output_dir:
        data["output"]["directory"] = args.output_dir

    sync = data["sync"]
    if args.recursive is not None:
        sync["recursive"] = args.recursive
    if args.attachments == "none":
        sync["include_resources"] = False
    elif args.attachments:
        sync["include_resources"] = True
        sync["resource_types"] = args.attachments
    if args.concurrency is not None:
        sync["concurrency"] = args.concurrency
    if args.root_concurrency is not None:
        sync["root_concurrency"] = args.root_concurrency
    if args.pool:
        sync["scheduling"] = "pool"
    if args.isolate_failures:
        sync["isolate_branch_failures"] = True
    if args.no_cache:
        sync["enable_cache"] = False

    network = data["network"]
    if args.proxy:
        network["proxy"] = args.proxy
    if args.max_retries is not None:
        network["max_retries"] = args.max_retries

    if args.verbose:
        data["log_level"] = "DEBUG"
    elif args.quiet:
        data["log_level"] = "ERROR"

    try:
        return NotionpullConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(str(e)) from e


def run_sync(args: argparse.Namespace) -> int:
    """Run the syncer with given arguments."""
    console = Console()

    try:
        config = build_config(args)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    if not config.pages:
        console.print("[red]Error:[/red] Please provide at least one page id or URL")
        return 1

    setup_logging(level=config.log_level, log_file=config.log_file)

    async def run() -> int:
        if not args.quiet:
            console.print(f"[bold blue]notionpull[/bold blue] v{__version__}")
            console.print(f"Pages: {len(config.root_pages())}")
            console.print(f"Output: {config.output.directory}")
            console.print()

        try:
            async with Syncer(config) as syncer:
                if args.quiet:
                    async for _ in syncer.run():
                        pass
                else:
                    with Progress(
                        SpinnerColumn(),
                        TextColumn("[progress.description]{task.description}"),
                        console=console,
                        transient=True,
                    ) as progress:
                        task = progress.add_task("Starting...", total=None)

                        async for event in syncer.run():
                            if event.type == EventType.STARTED:
                                progress.update(task, description=f"[cyan]{event.message}")
                            elif event.type == EventType.ROOT_STARTED:
                                progress.update(task, description=f"[cyan]{event.message}")
                            elif event.type == EventType.PAGE_SAVED:
                                progress.update(task, description=f"[cyan]Saved {event.page_id}")
                            elif event.type == EventType.PAGE_CACHE_HIT:
                                progress.update(task, description=f"[dim]Unchanged {event.page_id}")
                            elif event.type == EventType.RESOURCE_FAILED:
                                console.print(f"[yellow]Attachment failed:[/yellow] {event.page_id} - {event.error}")
                            elif event.type == EventType.ROOT_FAILED:
                                console.print(f"[red]Failed:[/red] {event.page_id} - {event.error}")
                            elif event.type == EventType.COMPLETED:
                                progress.update(task, description=f"[green]{event.message}")

                # Print stats
                stats = syncer.stats
                if not args.quiet:
                    console.print()
                    console.print("[bold]Results:[/bold]")
                    console.print(f"  Pages saved: {stats.pages_synced}")
                    console.print(f"  Pages unchanged: {stats.pages_skipped}")
                    console.print(f"  Partial updates: {stats.pages_partial}")
                    console.print(f"  Pages failed: {stats.pages_failed}")
                    console.print(f"  Attachments: {stats.resources_downloaded} ({stats.resources_failed} failed)")
                    console.print(f"  Duration: {stats.duration_seconds:.1f}s")

                return 0 if stats.roots_failed == 0 else 1

        except ConfigError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            return 1
        except Exception as e:
            console.print(f"[red]Error:[/red] {e}")
            if args.verbose:
                console.print_exception()
            return 1

    return asyncio.run(run())


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    return run_sync(args)


if __name__ == "__main__":
    sys.exit(main())
