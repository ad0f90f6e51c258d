"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from hoststack.locking import LockManager, LockTimeoutError


def test_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring a lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "hoststack.lock"
    with manager.deploy_lock() as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)
        assert "acquired_at" in data

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.deploy_lock(timeout=0.2):
        pass


def test_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.deploy_lock():
        with pytest.raises(LockTimeoutError):
            with manager.deploy_lock(timeout=0.1):
                pass


def test_named_locks_are_independent(tmp_path: Path) -> None:
    """Different lock names do not block each other."""
    manager = LockManager(tmp_path / "run", default_timeout=0.1)

    with manager.lock("alpha"):
        with manager.lock("beta") as handle:
            assert handle.path == tmp_path / "run" / "beta.lock"


def test_path_for_flattens_separators(tmp_path: Path) -> None:
    """Lock names cannot escape the runtime directory."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    assert manager.path_for("a/b") == tmp_path / "run" / "a-b.lock"
