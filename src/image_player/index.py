"""Live index of image files under a watched directory tree."""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

DEFAULT_FILTERS = ("*.jpg", "*.gif", "*.svg", "*.png")

# Reference point for the cache-busting query parameter
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class FileEntry:
    """One indexed file: relative key and its published URI."""

    key: str
    uri: str


Snapshot = tuple[FileEntry, ...]
SnapshotCallback = Callable[[Snapshot], None]


def _event_path(raw: bytes | str) -> Path:
    return Path(os.fsdecode(raw))


class IndexEventHandler(FileSystemEventHandler):
    """Routes watchdog events into a :class:`DirectoryIndex`.

    Errors raised while applying a single event are logged and dropped so one
    bad event never takes the observer thread down.
    """

    def __init__(self, index: DirectoryIndex, logger: logging.Logger) -> None:
        """Initialize the event handler.

        Args:
            index: Index receiving the changes.
            logger: Logger instance.

        """
        super().__init__()
        self.index = index
        self.logger = logger

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file and directory creation events."""
        path = _event_path(event.src_path)
        if event.is_directory:
            self._guard(event, self.index.apply_directory_upsert, path)
        else:
            self._guard(event, self.index.apply_upsert, path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        if not event.is_directory:
            self._guard(event, self.index.apply_upsert, _event_path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle renames, for files and whole directories."""
        src = _event_path(event.src_path)
        dest = _event_path(event.dest_path)
        if event.is_directory:
            self._guard(event, self.index.apply_directory_move, src, dest)
        else:
            self._guard(event, self.index.apply_move, src, dest)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file and directory deletion events."""
        path = _event_path(event.src_path)
        if event.is_directory:
            self._guard(event, self.index.apply_directory_delete, path)
        else:
            self._guard(event, self.index.apply_delete, path)

    def _guard(self, event: FileSystemEvent, action: Callable[..., None], *paths: Path) -> None:
        try:
            action(*paths)
        except (OSError, ValueError) as e:
            self.logger.warning("Failed to apply %s event for %s: %s", event.event_type, paths[0], e)


class DirectoryIndex:
    """Maintains ``relative path -> URI`` for every matching file under a root.

    Every processed change publishes the full mapping to subscribers while the
    index lock is held, so subscribers see snapshots in the order the events
    were applied. Subscribers must not call back into the index from their
    callback on another thread.
    """

    def __init__(
        self,
        root: Path | str,
        filters: Iterable[str] = DEFAULT_FILTERS,
        *,
        base_url: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the index.

        Args:
            root: Directory to index.
            filters: Filename filters (fnmatch style, case-insensitive).
            base_url: Prefix prepended to every published URI.
            logger: Logger instance.

        """
        self.root = Path(root)
        self.filters = tuple(f.lower() for f in filters)
        self.base_url = base_url
        self.logger = logger or logging.getLogger("image-player")
        self._files: dict[str, str] = {}
        self._subscribers: list[SnapshotCallback] = []
        self._lock = threading.RLock()
        self._observer: Observer | None = None
        self._started = False

    @property
    def is_running(self) -> bool:
        """Check if the filesystem observer is running."""
        return self._observer is not None

    def start(self, *, watch: bool = True) -> None:
        """Scan the root and start watching it.

        The mapping is fully populated before this returns. Events that arrive
        while the scan runs are applied afterwards.

        Args:
            watch: Follow filesystem changes after the scan.

        Raises:
            FileNotFoundError: If the root does not exist.
            NotADirectoryError: If the root is not a directory.
            OSError: If the root cannot be read or watched.

        """
        with self._lock:
            if self._started:
                return

            root = self.root.expanduser().resolve(strict=True)
            if not root.is_dir():
                raise NotADirectoryError(f"Image root is not a directory: {root}")
            self.root = root
            self._files.clear()

            try:
                if watch:
                    observer = Observer()
                    observer.schedule(IndexEventHandler(self, self.logger), str(root), recursive=True)
                    observer.start()
                    self._observer = observer
                for path in self._walk(root, strict=True):
                    try:
                        self._upsert(path, self._safe_uri(path))
                    except (OSError, ValueError) as e:
                        self.logger.warning("Skipping unreadable file %s: %s", path, e)
            except Exception:
                self._files.clear()
                self._halt_observer()
                raise

            self._started = True
            self.logger.info("Indexed %d files under %s", len(self._files), root)
            if self._observer is not None:
                self.logger.info("Watching directory: %s", root)
            self._publish()

    def stop(self) -> None:
        """Stop watching. Safe to call more than once."""
        with self._lock:
            self._started = False
        self._halt_observer()

    def _halt_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5.0)
            self.logger.info("Directory watcher stopped")

    def get_snapshot(self) -> Snapshot:
        """Return the current mapping as an immutable, key-sorted tuple."""
        with self._lock:
            return self._snapshot()

    def subscribe(self, callback: SnapshotCallback, *, replay: bool = False) -> None:
        """Register a listener for snapshots.

        Args:
            callback: Called with the full snapshot after every change.
            replay: Also deliver the current snapshot right away, atomically
                with the registration.

        """
        with self._lock:
            self._subscribers.append(callback)
            if replay:
                callback(self._snapshot())

    def unsubscribe(self, callback: SnapshotCallback) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._files

    def matches(self, path: Path) -> bool:
        """Check if a filename matches one of the filters."""
        name = path.name.lower()
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.filters)

    def relative_key(self, path: Path) -> str | None:
        """Get the index key for a path, or None if it lies outside the root."""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return None

    def uri_for(self, path: Path) -> str:
        """Build the published URI for a file.

        Args:
            path: Absolute path of a file under the root.

        Returns:
            ``<base_url><relative path>?<seconds since UNIX_EPOCH of last write>``.

        Raises:
            OSError: If the file cannot be stat'ed.

        """
        modified = datetime.fromtimestamp(path.stat().st_mtime, UTC)
        seconds = (modified - UNIX_EPOCH).total_seconds()
        stamp = f"{seconds:.6f}".rstrip("0").rstrip(".")
        key = self.relative_key(path) or path.name
        return f"{self.base_url}{quote(key, errors='surrogateescape')}?{stamp}"

    def _is_tracked(self, path: Path) -> bool:
        return self.matches(path) and self.relative_key(path) is not None

    def apply_upsert(self, path: Path) -> None:
        """Insert or refresh one image file, then publish.

        Paths outside the filters or the root are ignored without publishing.
        """
        if not self._is_tracked(path):
            return
        uri = self._safe_uri(path)
        with self._lock:
            self._upsert(path, uri)
            self._publish()

    def apply_delete(self, path: Path) -> None:
        """Remove one image file (absent keys are tolerated), then publish."""
        if not self._is_tracked(path):
            return
        with self._lock:
            self._files.pop(self.relative_key(path), None)
            self._publish()

    def apply_move(self, src: Path, dest: Path) -> None:
        """Re-key a renamed file as one transition, then publish once."""
        if not (self._is_tracked(src) or self._is_tracked(dest)):
            return
        uri = self._safe_uri(dest)
        with self._lock:
            key = self.relative_key(src)
            if key is not None:
                self._files.pop(key, None)
            self._upsert(dest, uri)
            self._publish()

    def apply_directory_upsert(self, directory: Path) -> None:
        """Index every image below a new directory; publish if any was found."""
        found = [(path, self._safe_uri(path)) for path in self._walk(directory)]
        with self._lock:
            before = dict(self._files)
            for path, uri in found:
                self._upsert(path, uri)
            if self._files != before:
                self._publish()

    def apply_directory_delete(self, directory: Path) -> None:
        """Drop every key below a removed directory; publish if any was dropped."""
        with self._lock:
            if self._drop_prefix(directory):
                self._publish()

    def apply_directory_move(self, src: Path, dest: Path) -> None:
        """Re-key a renamed directory subtree as one transition, then publish."""
        found = [(path, self._safe_uri(path)) for path in self._walk(dest)]
        with self._lock:
            before = dict(self._files)
            self._drop_prefix(src)
            for path, uri in found:
                self._upsert(path, uri)
            if self._files != before:
                self._publish()

    def _walk(self, directory: Path, *, strict: bool = False) -> list[Path]:
        """List matching files below a directory.

        With ``strict``, failing to read ``directory`` itself raises; errors on
        nested directories are always logged and skipped.
        """

        def on_error(error: OSError) -> None:
            if strict and error.filename is not None and Path(error.filename) == directory:
                raise error
            self.logger.warning("Cannot read directory %s: %s", error.filename, error.strerror)

        found: list[Path] = []
        for dirpath, _dirnames, filenames in os.walk(directory, onerror=on_error):
            for filename in filenames:
                path = Path(dirpath) / filename
                if self.matches(path):
                    found.append(path)
        return found

    def _safe_uri(self, path: Path) -> str | None:
        """Build a URI, or None if the file vanished before it could be read."""
        if not self.matches(path):
            return None
        try:
            return self.uri_for(path)
        except FileNotFoundError:
            self.logger.debug("File vanished before indexing: %s", path)
            return None

    def _upsert(self, path: Path, uri: str | None) -> None:
        key = self.relative_key(path)
        if key is None or not self.matches(path):
            return
        if uri is None:
            self._files.pop(key, None)
        else:
            self._files[key] = uri

    def _drop_prefix(self, directory: Path) -> int:
        """Remove every key below a directory and return how many went."""
        key = self.relative_key(directory)
        if key is None:
            return 0
        prefix = "" if key == "." else f"{key}/"
        stale = [k for k in self._files if k.startswith(prefix)]
        for k in stale:
            del self._files[k]
        return len(stale)

    def _snapshot(self) -> Snapshot:
        return tuple(FileEntry(key, self._files[key]) for key in sorted(self._files))

    def _publish(self) -> None:
        snapshot = self._snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                self.logger.exception("Snapshot subscriber failed")
