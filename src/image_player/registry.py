"""Reference-counted registry of rotators keyed by group path."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .rotator import DEFAULT_GROUP, DEFAULT_INTERVAL, Rotator

if TYPE_CHECKING:
    from .index import DirectoryIndex

RotatorFactory = Callable[[str], Rotator]


@dataclass
class _Entry:
    rotator: Rotator
    count: int = 0


class RotatorRegistry:
    """Hands out one shared :class:`Rotator` per group path.

    A rotator is created on the first ``acquire`` and disposed when the last
    holder calls ``release``. Every call serializes on one lock, and disposal
    happens inside it, so a group is either fully live or absent.
    """

    def __init__(
        self,
        index: DirectoryIndex,
        *,
        default_group: str = DEFAULT_GROUP,
        default_interval: float = DEFAULT_INTERVAL,
        rotator_factory: RotatorFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            index: Directory index shared by all rotators.
            default_group: Fallback group for rotators.
            default_interval: Default display time for rotators.
            rotator_factory: Builds a rotator for a group. Defaults to
                :class:`Rotator` on ``index``.
            logger: Logger instance.

        """
        self.index = index
        self.default_group = default_group
        self.default_interval = default_interval
        self.logger = logger or logging.getLogger("image-player")
        self._factory = rotator_factory or self._create_rotator
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _create_rotator(self, group: str) -> Rotator:
        return Rotator(
            self.index,
            group,
            default_group=self.default_group,
            default_interval=self.default_interval,
            logger=self.logger,
        )

    def acquire(self, group: str) -> Rotator:
        """Get the rotator for a group, creating it if needed.

        Every call must be paired with one :meth:`release`.
        """
        with self._lock:
            entry = self._entries.get(group)
            if entry is None:
                entry = _Entry(self._factory(group))
                self._entries[group] = entry
                self.logger.debug("Created rotator for group: %s", group)
            entry.count += 1
            return entry.rotator

    def release(self, group: str) -> None:
        """Drop one hold on a group; dispose its rotator at zero.

        Releasing a group that is not held is ignored.
        """
        with self._lock:
            entry = self._entries.get(group)
            if entry is None:
                return
            entry.count -= 1
            if entry.count <= 0:
                del self._entries[group]
                entry.rotator.dispose()
                self.logger.debug("Released rotator for group: %s", group)

    @contextmanager
    def held(self, group: str) -> Iterator[Rotator]:
        """Hold a group's rotator for the duration of a ``with`` block."""
        rotator = self.acquire(group)
        try:
            yield rotator
        finally:
            self.release(group)

    def reference_count(self, group: str) -> int:
        """Number of current holders of a group (0 if absent)."""
        with self._lock:
            entry = self._entries.get(group)
            return entry.count if entry else 0

    def groups(self) -> list[str]:
        """Groups that currently have a live rotator."""
        with self._lock:
            return sorted(self._entries)

    def dispose(self) -> None:
        """Dispose every rotator and forget all groups."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                entry.rotator.dispose()
        if entries:
            self.logger.debug("Disposed %d rotators", len(entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, group: object) -> bool:
        with self._lock:
            return group in self._entries
