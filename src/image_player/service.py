"""Long-running image player service."""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from .index import DirectoryIndex
from .registry import RotatorRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .config import PlayerConfig
    from .index import Snapshot
    from .rotator import ItemCallback, Rotator


@dataclass
class ServiceStats:
    """Statistics for the service."""

    start_time: datetime
    snapshots_published: int = 0
    items_shown: int = 0
    files_indexed: int = 0


class ImagePlayerService:
    """Owns the directory index and the rotator registry."""

    def __init__(self, config: PlayerConfig) -> None:
        """Initialize the service.

        Args:
            config: Player configuration.

        Raises:
            ValueError: If ``config.log_level`` is not a logging level.

        """
        self.config = config
        self.logger = self._setup_logging()

        # Initialize components
        self.index = DirectoryIndex(
            config.image_root,
            config.extensions,
            base_url=config.base_url,
            logger=self.logger,
        )
        self.registry = RotatorRegistry(
            self.index,
            default_group=config.default_group,
            default_interval=config.default_interval,
            logger=self.logger,
        )

        # State
        self.stats = ServiceStats(start_time=datetime.now())
        self._stats_lock = threading.Lock()
        self._followers: dict[str, tuple[Rotator, ItemCallback]] = {}
        self._running = False
        self._started = False

    def _setup_logging(self) -> logging.Logger:
        """Set up logging for the service.

        Returns:
            Configured logger instance.

        """
        level = logging.getLevelName(self.config.log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Invalid log_level: {self.config.log_level!r}")

        logger = logging.getLogger("image-player")
        logger.setLevel(level)

        # Clear existing handlers to avoid duplicates if the service is recreated
        if logger.handlers:
            logger.handlers.clear()

        console_handler = RichHandler(
            console=Console(),
            show_time=True,
            show_path=False,
        )
        console_handler.setLevel(logging.INFO)
        logger.addHandler(console_handler)

        self.config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(self.config.log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        )
        logger.addHandler(file_handler)

        return logger

    def start(self) -> None:
        """Scan the image root and start watching it."""
        if self._started:
            return
        self.index.subscribe(self._on_snapshot)
        try:
            self.index.start(watch=self.config.watch)
        except OSError:
            self.index.unsubscribe(self._on_snapshot)
            raise
        self._started = True

    def stop(self) -> None:
        """Release all rotators and stop watching. Safe to call twice."""
        for group in list(self._followers):
            self.unfollow(group)
        self.registry.dispose()
        self.index.stop()
        self.index.unsubscribe(self._on_snapshot)
        self._running = False
        self._started = False

    def follow(self, group: str) -> Rotator:
        """Acquire a group's rotator and log every item it shows.

        Args:
            group: Group path to follow.

        Returns:
            The group's rotator.

        """
        if group in self._followers:
            return self._followers[group][0]

        rotator = self.registry.acquire(group)
        listener = partial(self._on_item_changed, group)
        rotator.subscribe(listener)
        self._followers[group] = (rotator, listener)
        self.logger.info(
            "Following group %s (%d images), showing %s",
            group,
            len(rotator.candidates),
            rotator.current_item or "nothing",
        )
        return rotator

    def unfollow(self, group: str) -> None:
        """Stop following a group and release its rotator."""
        follower = self._followers.pop(group, None)
        if follower is None:
            return
        rotator, listener = follower
        rotator.unsubscribe(listener)
        self.registry.release(group)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        with self._stats_lock:
            self.stats.snapshots_published += 1
            self.stats.files_indexed = len(snapshot)

    def _on_item_changed(self, group: str, item: str | None) -> None:
        with self._stats_lock:
            self.stats.items_shown += 1
        if item is None:
            self.logger.debug("[%s] nothing to show", group)
        else:
            self.logger.debug("[%s] showing %s", group, item)

    async def run(self, groups: Iterable[str] | None = None) -> None:
        """Run until a shutdown signal arrives.

        Args:
            groups: Groups to follow. Defaults to ``config.groups``.

        """
        self._running = True
        self.logger.info("Starting image player...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown)

        self.start()
        for group in groups if groups is not None else self.config.groups:
            self.follow(group)

        try:
            while self._running:
                await asyncio.sleep(0.5)
        except asyncio.CancelledError:
            self.logger.info("Service cancelled")
            raise
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            self.stop()
            self.logger.info(
                "Image player stopped. Stats: snapshots=%d, items shown=%d, files=%d",
                self.stats.snapshots_published,
                self.stats.items_shown,
                self.stats.files_indexed,
            )

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        self.logger.info("Shutdown signal received")
        self._running = False
