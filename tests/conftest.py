"""
Shared fixtures for dbkeeper tests.

The supervisor's collaborators (etcd, confd, WAL-E, postgres) are replaced
with in-memory fakes at the seams the supervisor exposes, and waits go through
a CountingEvent so no test actually sleeps.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from dbkeeper.local.config import SupervisorConfig, load_config
from dbkeeper.local.config_client import SetResult
from dbkeeper.local.errors import BackupToolError


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class CountingEvent(threading.Event):
    """An Event whose wait() returns immediately and trips itself after max_waits calls."""

    def __init__(self, max_waits: Optional[int] = None) -> None:
        super().__init__()
        self.max_waits = max_waits
        self.waits: List[Optional[float]] = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.max_waits is not None and len(self.waits) >= self.max_waits:
            self.set()
        return self.is_set()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStore:
    """In-memory stand-in for EtcdClient with first-writer-wins creates."""

    def __init__(self) -> None:
        self.values: Dict[str, str] = {}
        self.ttl_writes: List[tuple] = []
        self.fail_creates_for: set = set()
        self.fail_sets = 0
        self.last_error: Optional[str] = None
        self.available = True

    def wait_available(self, retry_interval, stop_event) -> bool:
        return self.available and not stop_event.is_set()

    def set_if_absent(self, path: str, value: str) -> SetResult:
        if path in self.fail_creates_for:
            self.last_error = f"Failed to create '{path}': HTTP 500"
            return SetResult.ERROR
        if path in self.values:
            return SetResult.ALREADY_EXISTS
        self.values[path] = value
        return SetResult.CREATED

    def set(self, path: str, value: str, ttl=None) -> bool:
        if self.fail_sets > 0:
            self.fail_sets -= 1
            return False
        self.values[path] = value
        self.ttl_writes.append((path, value, ttl))
        return True


class FakeRenderer:
    def __init__(self) -> None:
        self.onetime_renders = 0
        self.watch_started = False
        self.render_code = 0

    def wait_until_rendered(self, retry_interval, stop_event) -> bool:
        self.onetime_renders += 1
        return not stop_event.is_set()

    def render_once(self) -> int:
        self.onetime_renders += 1
        return self.render_code

    def start_watch(self):
        self.watch_started = True
        return None


class FakeBackups:
    """Records backup tool calls; fetch drops a file into the data directory."""

    command_line = "envdir /etc/wal-e.d/env wal-e"

    def __init__(self, catalog_entries: int = 0) -> None:
        self.catalog_entries = catalog_entries
        self.calls: List[tuple] = []
        self.fail_fetch = False
        self.fail_push = False

    def count_backups(self) -> int:
        self.calls.append(("backup-list",))
        return self.catalog_entries

    def fetch(self, data_dir: Path, backup_name: str = "LATEST") -> None:
        self.calls.append(("backup-fetch", data_dir, backup_name))
        if self.fail_fetch:
            raise BackupToolError("backup-fetch", 1, "no such backup")
        (data_dir / "PG_VERSION").write_text("9.3\n")

    def push(self, data_dir: Path) -> None:
        self.calls.append(("backup-push", data_dir))
        if self.fail_push:
            raise BackupToolError("backup-push", 1, "bucket unreachable")

    def delete_retain(self, retain: int) -> None:
        self.calls.append(("delete", retain))

    def actions(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeProcess:
    """Quacks like subprocess.Popen for the parts the supervisor touches."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.signals: List[int] = []

    def poll(self):
        return self.returncode

    def send_signal(self, sig) -> None:
        self.signals.append(sig)
        self.returncode = 0

    def wait(self, timeout=None):
        return self.returncode

    def kill(self) -> None:
        self.returncode = -9


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_config(tmp_path):
    """Builds a SupervisorConfig rooted in tmp_path, with per-test environment overrides."""

    def _make(**env: str) -> SupervisorConfig:
        base = {
            "HOST": "10.0.0.5",
            "ETCD_TTL": "10",
            "PG_DATA_DIR": str(tmp_path / "pgdata"),
            "PG_INITIALIZED_MARKER": str(tmp_path / "initialized"),
            "SERVICE_USER": "",
        }
        base.update(env)
        return load_config(base)

    return _make


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def renderer():
    return FakeRenderer()
