"""Self-paced rotation through the images of one group."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .index import DirectoryIndex, FileEntry, Snapshot

DEFAULT_GROUP = "default"
DEFAULT_INTERVAL = 10.0

# "slide-5sec.png" or "slide-5sec.png?1700000000"
INTERVAL_PATTERN = re.compile(r"-(\d+)sec\.[a-zA-Z]+(?:\?.*)?$")

ItemCallback = Callable[[str | None], None]


class TimerHandle(Protocol):
    """A started one-shot timer that can be cancelled."""

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def start_thread_timer(interval: float, callback: Callable[[], None]) -> TimerHandle:
    """Start a daemon ``threading.Timer``."""
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    timer.start()
    return timer


def parse_interval(uri: str, default: float = DEFAULT_INTERVAL) -> float:
    """Get the display time encoded in a filename.

    Args:
        uri: URI or filename, optionally with a query string.
        default: Value used when there is no usable ``-<N>sec`` marker.

    Returns:
        Display time in seconds.

    """
    match = INTERVAL_PATTERN.search(uri)
    if not match:
        return default
    seconds = int(match.group(1))
    return float(seconds) if seconds > 0 else default


def _with_prefix(entries: Iterable[FileEntry], prefix: str) -> list[str]:
    return [entry.uri for entry in sorted(entries, key=lambda e: e.key) if entry.key.startswith(prefix)]


def select_candidates(snapshot: Snapshot, group: str, default_group: str = DEFAULT_GROUP) -> list[str]:
    """Pick the URIs a group rotates through.

    Args:
        snapshot: Current index snapshot.
        group: Group path; keys starting with it are candidates.
        default_group: Prefix used when the group has no files.

    Returns:
        Candidate URIs ordered by key.

    """
    return _with_prefix(snapshot, group) or _with_prefix(snapshot, default_group)


class Rotator:
    """Cycles through one group's files, holding each for its own interval.

    The position advances when the timer fires and is reset whenever the index
    publishes a new snapshot. Listeners are called with the current URI (or
    None) on every advance, while the rotator lock is held. They must not call
    into the index or the registry.
    """

    def __init__(
        self,
        index: DirectoryIndex,
        group: str,
        *,
        default_group: str = DEFAULT_GROUP,
        default_interval: float = DEFAULT_INTERVAL,
        timer_factory: TimerFactory = start_thread_timer,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the rotator and show its first item.

        Args:
            index: Directory index to follow.
            group: Group path selecting the files.
            default_group: Fallback group when ``group`` has no files.
            default_interval: Display time without a ``-<N>sec`` marker.
            timer_factory: Starts the one-shot timer for each item.
            logger: Logger instance.

        """
        self.group = group
        self.default_group = default_group
        self.default_interval = default_interval
        self.logger = logger or logging.getLogger("image-player")
        self._index = index
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._candidates: tuple[str, ...] = ()
        self._position = -1
        self._interval = default_interval
        self._subscribers: list[ItemCallback] = []
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._disposed = False

        index.subscribe(self._on_snapshot, replay=True)

    def __repr__(self) -> str:
        return f"Rotator(group={self.group!r}, candidates={len(self._candidates)})"

    def __enter__(self) -> Rotator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    @property
    def current_item(self) -> str | None:
        """URI currently shown, or None if the group has no candidates."""
        with self._lock:
            return self._current()

    def get_current_item(self) -> str | None:
        """Return the URI currently shown, or None."""
        return self.current_item

    @property
    def candidates(self) -> tuple[str, ...]:
        with self._lock:
            return self._candidates

    @property
    def position(self) -> int:
        """Index of the current item; -1 until the first selection."""
        with self._lock:
            return self._position

    @property
    def interval(self) -> float:
        """Seconds the current item stays on screen."""
        with self._lock:
            return self._interval

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, callback: ItemCallback) -> None:
        """Register a listener for current-item changes."""
        with self._lock:
            if not self._disposed:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: ItemCallback) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def advance(self) -> None:
        """Move to the next item right away and restart its timer."""
        with self._lock:
            if not self._disposed:
                self._advance()

    def dispose(self) -> None:
        """Stop the timer and detach from the index. Safe to call twice.

        No listener is called once this returns.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._cancel_timer()
            self._subscribers.clear()
        # Outside our lock: the index publishes to us while holding its own.
        self._index.unsubscribe(self._on_snapshot)
        self.logger.debug("Rotator disposed: %s", self.group)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            if self._disposed:
                return
            self._candidates = tuple(select_candidates(snapshot, self.group, self.default_group))
            self._position = -1
            self._advance()

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if self._disposed or generation != self._generation:
                return
            self._advance()

    def _advance(self) -> None:
        self._cancel_timer()
        self._position = self._position + 1 if self._position < len(self._candidates) - 1 else 0

        current = self._current()
        self._interval = parse_interval(current, self.default_interval) if current else self.default_interval

        self._generation += 1
        generation = self._generation
        self._timer = self._timer_factory(self._interval, lambda: self._on_timer(generation))
        self._notify(current)

    def _current(self) -> str | None:
        if 0 <= self._position < len(self._candidates):
            return self._candidates[self._position]
        return None

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _notify(self, item: str | None) -> None:
        for callback in list(self._subscribers):
            try:
                callback(item)
            except Exception:
                self.logger.exception("Listener for group %s failed", self.group)
