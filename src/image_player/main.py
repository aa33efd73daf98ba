"""Main entry point for the image player."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from .config import PlayerConfig
from .service import ImagePlayerService

if TYPE_CHECKING:
    from .index import Snapshot


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.

    """
    parser = argparse.ArgumentParser(
        prog="image-player",
        description="Rotating image slideshows for a watched image tree",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--root",
        "-r",
        type=Path,
        default=None,
        help="Image root directory (overrides the configuration)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command (default)
    run_parser = subparsers.add_parser("run", help="Watch the image tree and rotate groups")
    run_parser.add_argument(
        "--group",
        "-g",
        action="append",
        dest="groups",
        default=None,
        help="Group path to follow (repeatable)",
    )

    # Scan command
    subparsers.add_parser("scan", help="List indexed images")

    # Show command
    show_parser = subparsers.add_parser("show", help="Show the rotation order of one group")
    show_parser.add_argument("group", help="Group path")

    # Config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "--init",
        action="store_true",
        help="Create default configuration file",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )

    return parser.parse_args(argv)


def _scan(config: PlayerConfig, console: Console) -> Snapshot | None:
    """Index the image root once without watching it."""
    from .index import DirectoryIndex

    index = DirectoryIndex(config.image_root, config.extensions, base_url=config.base_url)
    try:
        index.start(watch=False)
    except OSError as e:
        console.print(f"[red]Cannot index {config.image_root}: {e}[/red]")
        return None
    return index.get_snapshot()


def cmd_scan(config: PlayerConfig, args: argparse.Namespace) -> int:
    """Execute scan command.

    Args:
        config: Player configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    from .rotator import parse_interval

    console = Console()
    snapshot = _scan(config, console)
    if snapshot is None:
        return 1

    if not snapshot:
        console.print("[yellow]No images found[/yellow]")
        return 0

    table = Table(title=f"Found {len(snapshot)} images")
    table.add_column("Path", style="cyan")
    table.add_column("URI", style="dim")
    table.add_column("Interval", style="green", justify="right")

    for entry in snapshot:
        interval = parse_interval(entry.uri, config.default_interval)
        table.add_row(entry.key, entry.uri, f"{interval:g}s")

    console.print(table)
    return 0


def cmd_show(config: PlayerConfig, args: argparse.Namespace) -> int:
    """Execute show command.

    Args:
        config: Player configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    from .rotator import parse_interval, select_candidates

    console = Console()
    snapshot = _scan(config, console)
    if snapshot is None:
        return 1

    candidates = select_candidates(snapshot, args.group, config.default_group)
    if not candidates:
        console.print(f"[yellow]Nothing to show for group {args.group!r}[/yellow]")
        return 0

    own = any(entry.key.startswith(args.group) for entry in snapshot)
    title = f"Rotation for {args.group!r}"
    if not own:
        title += f" (falling back to {config.default_group!r})"

    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("URI", style="cyan")
    table.add_column("Interval", style="green", justify="right")

    for position, uri in enumerate(candidates):
        table.add_row(str(position), uri, f"{parse_interval(uri, config.default_interval):g}s")

    console.print(table)
    return 0


def cmd_config(config: PlayerConfig, args: argparse.Namespace) -> int:
    """Execute config command.

    Args:
        config: Player configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    console = Console()

    if args.init:
        config_path = args.config or PlayerConfig.get_config_path()
        if config_path.exists():
            console.print(f"[yellow]Config already exists: {config_path}[/yellow]")
            return 1
        config.save(config_path)
        console.print(f"[green]Created config: {config_path}[/green]")
        return 0

    if args.show:
        table = Table(title="Current Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Image root", str(config.image_root))
        table.add_row("Extensions", ", ".join(config.extensions))
        table.add_row("Base URL", config.base_url or "(relative)")
        table.add_row("Default group", config.default_group)
        table.add_row("Default interval", f"{config.default_interval:g}s")
        table.add_row("Groups", "\n".join(config.groups) or "(none)")
        table.add_row("Watch", str(config.watch))
        table.add_row("Log file", str(config.log_file))
        table.add_row("Log level", config.log_level)

        console.print(table)
        return 0

    console.print("[yellow]Use --init or --show[/yellow]")
    return 1


def cmd_run(config: PlayerConfig, args: argparse.Namespace) -> int:
    """Execute run command.

    Args:
        config: Player configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    groups = getattr(args, "groups", None)

    try:
        service = ImagePlayerService(config)
    except (OSError, ValueError) as e:
        Console().print(f"[red]Cannot start image player: {e}[/red]")
        return 1

    try:
        asyncio.run(service.run(groups))
    except OSError as e:
        service.logger.error("Cannot start image player: %s", e)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code.

    """
    args = parse_args(argv)
    try:
        config = PlayerConfig.load(args.config)
    except ValueError as e:
        Console().print(f"[red]{e}[/red]")
        return 1

    if args.root is not None:
        config.image_root = args.root

    # Default to run command
    command = args.command or "run"

    if command == "scan":
        return cmd_scan(config, args)
    elif command == "show":
        return cmd_show(config, args)
    elif command == "config":
        return cmd_config(config, args)
    elif command == "run":
        return cmd_run(config, args)
    else:
        print(f"Unknown command: {command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
