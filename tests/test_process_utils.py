"""Tests for port liveness, child process handling and signal-driven shutdown."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from types import SimpleNamespace
from unittest.mock import patch

import psutil
import pytest

from conftest import CountingEvent, FakeProcess
from dbkeeper.local import app_process
from dbkeeper.local.supervisor import process_utils, shutdown


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _conn(port: int, status: str = psutil.CONN_LISTEN):
    return SimpleNamespace(status=status, laddr=SimpleNamespace(ip="0.0.0.0", port=port))


@pytest.fixture
def sleeper():
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    yield proc
    if proc.poll() is None:
        proc.kill()
        proc.wait()


@pytest.fixture
def keep_signal_handlers():
    saved = {sig: signal.getsignal(sig) for sig in shutdown.HANDLED_SIGNALS}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


# ---------------------------------------------------------------------------
# Port liveness
# ---------------------------------------------------------------------------

class TestIsPortListening:

    def test_listening_socket_found(self):
        with patch("psutil.net_connections", return_value=[_conn(22), _conn(5432)]):
            assert process_utils.is_port_listening(5432)

    def test_established_connection_is_not_listening(self):
        with patch("psutil.net_connections", return_value=[_conn(5432, psutil.CONN_ESTABLISHED)]):
            assert not process_utils.is_port_listening(5432)

    def test_socket_without_local_address_is_ignored(self):
        conn = SimpleNamespace(status=psutil.CONN_LISTEN, laddr=())
        with patch("psutil.net_connections", return_value=[conn]):
            assert not process_utils.is_port_listening(5432)

    def test_access_denied_counts_as_not_listening(self):
        with patch("psutil.net_connections", side_effect=psutil.AccessDenied()):
            assert not process_utils.is_port_listening(5432)


class TestAwaitListening:

    def test_polls_until_listening(self):
        answers = iter([False, False, True])
        stop = CountingEvent()
        assert process_utils.await_listening(5432, 1, stop, probe=lambda port: next(answers))
        assert stop.waits == [1, 1]

    def test_shutdown_abandons_wait(self):
        stop = CountingEvent(max_waits=2)
        assert not process_utils.await_listening(5432, 1, stop, probe=lambda port: False)


# ---------------------------------------------------------------------------
# Process creation and status
# ---------------------------------------------------------------------------

class TestServiceArgs:

    def test_runs_engine_as_service_user(self, make_config):
        cfg = make_config(SERVICE_USER="postgres", PG_BINPATH="/usr/lib/postgresql/9.3/bin",
                          PG_CONFIG="/etc/postgresql/main/postgresql.conf", PG_LISTEN="*")
        assert process_utils.get_service_args(cfg) == [
            "sudo", "-u", "postgres",
            "/usr/lib/postgresql/9.3/bin/postgres",
            "-c", "config-file=/etc/postgresql/main/postgresql.conf",
            "-c", "listen-addresses=*",
        ]

    def test_no_prefix_without_service_user(self, make_config):
        args = process_utils.get_service_args(make_config())
        assert args[0].endswith("postgres")
        assert "sudo" not in args

    def test_start_service_launches_engine(self, make_config):
        cfg = make_config()
        with patch("dbkeeper.local.supervisor.process_utils.launch_process") as launch:
            process_utils.start_service(cfg)
        launch.assert_called_once_with(process_utils.get_service_args(cfg), "postgres")


class TestLaunchProcess:

    def test_missing_executable_raises(self):
        with pytest.raises(OSError):
            app_process.launch_process(["/nonexistent/dbkeeper-binary"], "missing")

    def test_relays_both_streams_to_process_logger(self, caplog):
        proc = subprocess.Popen(
            [sys.executable, "-c", "import sys; print('ready'); sys.stderr.write('LOG:  starting\\n')"],
            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        )
        with caplog.at_level(logging.INFO, logger="proc.python"):
            threads = app_process.relay_output(proc, "python")
            proc.wait()
            for thread in threads:
                thread.join(5)
        lines = sorted(r.getMessage() for r in caplog.records if r.name == "proc.python")
        assert lines == ["LOG:  starting", "ready"]

    def test_run_command_captures_text(self):
        result = app_process.run_command([sys.executable, "-c", "print('ready')"], "python")
        assert result.returncode == 0
        assert result.stdout.strip() == "ready"


class TestStatus:

    def test_is_running(self):
        proc = FakeProcess()
        assert process_utils.is_running(proc)
        proc.returncode = 0
        assert not process_utils.is_running(proc)
        assert not process_utils.is_running(None)

    def test_describe_exit(self):
        proc = FakeProcess()
        proc.returncode = -15
        assert process_utils.describe_exit(proc) == "killed by signal 15"
        proc.returncode = 2
        assert process_utils.describe_exit(proc) == "exit status 2"

    def test_terminate_skips_exited_process(self):
        proc = FakeProcess()
        proc.returncode = 0
        process_utils.terminate(proc, "postgres")
        assert proc.signals == []


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

class TestGracefulShutdown:

    def test_waits_for_real_child_to_exit(self, sleeper):
        shutdown.graceful_shutdown(sleeper)
        assert sleeper.returncode == -signal.SIGTERM

    def test_stops_renderer_watch_too(self, sleeper):
        service = FakeProcess()
        shutdown.graceful_shutdown(service, sleeper)
        assert service.signals == [signal.SIGTERM]
        assert sleeper.returncode is not None

    def test_nothing_started(self):
        shutdown.graceful_shutdown(None, None)


class TestSignalHandlers:

    def test_sigterm_sets_shutdown_event(self, keep_signal_handlers):
        stop = threading.Event()
        shutdown.install_signal_handlers(stop)
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            assert stop.wait(1)
        finally:
            shutdown.restore_default_handlers()
        assert signal.getsignal(signal.SIGTERM) is signal.SIG_DFL

    def test_repeated_signal_keeps_event_set(self, keep_signal_handlers):
        stop = threading.Event()
        shutdown.install_signal_handlers(stop)
        try:
            os.kill(os.getpid(), signal.SIGINT)
            assert stop.wait(1)
            os.kill(os.getpid(), signal.SIGINT)
            assert stop.is_set()
        finally:
            shutdown.restore_default_handlers()
