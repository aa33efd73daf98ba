"""Tests for the reference-counted rotator registry."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from image_player.index import DirectoryIndex
from image_player.registry import RotatorRegistry
from image_player.rotator import Rotator


def _never_fire(_interval: float, _callback: object) -> MagicMock:
    return MagicMock()


@pytest.fixture
def index(tmp_path: Path) -> DirectoryIndex:
    """Create an index with two groups."""
    for name in ("g/1.png", "h/1.png", "default/1.png"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"img")
        os.utime(path, (1_700_000_000, 1_700_000_000))
    idx = DirectoryIndex(tmp_path)
    idx.start(watch=False)
    return idx


@pytest.fixture
def created() -> list[Rotator]:
    """Every rotator built by the registry under test."""
    return []


@pytest.fixture
def registry(index: DirectoryIndex, created: list[Rotator]) -> RotatorRegistry:
    """Create a registry whose rotators never tick on their own."""

    def factory(group: str) -> Rotator:
        rotator = Rotator(index, group, timer_factory=_never_fire)
        created.append(rotator)
        return rotator

    return RotatorRegistry(index, rotator_factory=factory)


class TestReferenceCounting:
    """Tests for acquire/release lifecycle."""

    def test_acquire_creates_once(self, registry: RotatorRegistry, created: list[Rotator]) -> None:
        """Test that repeated acquires share one rotator."""
        first = registry.acquire("g")
        second = registry.acquire("g")

        assert first is second
        assert len(created) == 1
        assert registry.reference_count("g") == 2

    def test_last_release_disposes(self, registry: RotatorRegistry) -> None:
        """Test that two acquires need two releases."""
        rotator = registry.acquire("g")
        registry.acquire("g")

        registry.release("g")
        assert "g" in registry
        assert not rotator.disposed

        registry.release("g")
        assert "g" not in registry
        assert rotator.disposed

    def test_reacquire_creates_new_instance(self, registry: RotatorRegistry) -> None:
        """Test that a released group gets a brand-new rotator."""
        old = registry.acquire("g")
        registry.release("g")

        new = registry.acquire("g")

        assert new is not old
        assert not new.disposed

    def test_release_unknown_group_is_noop(self, registry: RotatorRegistry) -> None:
        """Test that releasing an unheld group does nothing."""
        registry.release("nope")

        assert len(registry) == 0

    def test_double_release_is_noop(self, registry: RotatorRegistry) -> None:
        """Test that an extra release after disposal is ignored."""
        registry.acquire("g")
        registry.release("g")
        registry.release("g")

        assert registry.reference_count("g") == 0

    def test_groups_are_independent(self, registry: RotatorRegistry) -> None:
        """Test that releasing one group leaves others alone."""
        g = registry.acquire("g")
        h = registry.acquire("h")

        registry.release("g")

        assert registry.groups() == ["h"]
        assert g.disposed
        assert not h.disposed

    def test_held_context_manager(self, registry: RotatorRegistry) -> None:
        """Test that held() releases on exit."""
        with registry.held("g") as rotator:
            assert registry.reference_count("g") == 1

        assert rotator.disposed
        assert "g" not in registry

    def test_disposed_rotator_leaves_index(self, registry: RotatorRegistry, index: DirectoryIndex) -> None:
        """Test that the released rotator no longer listens to the index."""
        listener = MagicMock()
        rotator = registry.acquire("g")
        rotator.subscribe(listener)
        registry.release("g")

        index.apply_delete(index.root / "g" / "1.png")

        listener.assert_not_called()


class TestDefaultFactory:
    """Tests for rotators built by the registry itself."""

    def test_uses_registry_defaults(self, index: DirectoryIndex) -> None:
        """Test that fallback group and interval reach the rotators."""
        registry = RotatorRegistry(index, default_group="h", default_interval=42.0)

        rotator = registry.acquire("missing")
        try:
            assert rotator.default_group == "h"
            assert rotator.interval == 42.0
            assert rotator.current_item is not None
            assert rotator.current_item.startswith("h/1.png?")
        finally:
            registry.dispose()


class TestDispose:
    """Tests for registry-wide disposal."""

    def test_dispose_all(self, registry: RotatorRegistry, created: list[Rotator]) -> None:
        """Test that dispose tears down every rotator."""
        registry.acquire("g")
        registry.acquire("h")
        registry.acquire("h")

        registry.dispose()

        assert len(registry) == 0
        assert all(rotator.disposed for rotator in created)

    def test_dispose_twice(self, registry: RotatorRegistry) -> None:
        """Test that a second dispose is a no-op."""
        registry.acquire("g")

        registry.dispose()
        registry.dispose()

        assert len(registry) == 0

    def test_release_after_dispose_is_noop(self, registry: RotatorRegistry) -> None:
        """Test that holders releasing after shutdown do not fail."""
        registry.acquire("g")
        registry.dispose()

        registry.release("g")


class TestConcurrency:
    """Tests for concurrent acquire/release."""

    def test_concurrent_acquire_creates_one_rotator(self, registry: RotatorRegistry, created: list[Rotator]) -> None:
        """Test that racing first acquires do not double-create."""
        workers = 8
        barrier = threading.Barrier(workers)

        def worker() -> None:
            barrier.wait()
            registry.acquire("g")

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(created) == 1
        assert registry.reference_count("g") == workers

    def test_balanced_acquire_release_leaves_nothing(self, registry: RotatorRegistry, created: list[Rotator]) -> None:
        """Test that no increment is lost under contention."""
        workers = 8
        barrier = threading.Barrier(workers)

        def worker() -> None:
            barrier.wait()
            for _ in range(50):
                registry.acquire("g")
                registry.release("g")

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 0
        assert created
        assert all(rotator.disposed for rotator in created)
