import signal
import logging
import threading
import subprocess
from typing import TYPE_CHECKING, Callable, List, Optional

import psutil

from dbkeeper.local.app_process import launch_process, run_as_prefix

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig

log = logging.getLogger(__name__)


#* --- Port Liveness ---
def is_port_listening(port: int) -> bool:
    """
    Checks whether any local TCP socket is listening on the given port.

    :param port: The local port number.
    :return: True if a socket in LISTEN state is bound to the port.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied as e:
        log.error(f"Not permitted to inspect listening sockets: {e}")
        return False
    return any(
        conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
        for conn in connections
    )

def await_listening(
    port: int,
    poll_interval: float,
    stop_event: threading.Event,
    probe: Callable[[int], bool] = is_port_listening,
) -> bool:
    """
    Polls until the port is listening.

    :param port: The port to watch.
    :param poll_interval: Seconds between checks.
    :param stop_event: Abandons the wait when set.
    :param probe: The liveness check, replaceable for tests.
    :return: True once listening, False if shutdown was requested first.
    """
    log.info(f"Waiting for port {port} to start listening...")
    while not stop_event.is_set():
        if probe(port):
            log.info(f"Port {port} is listening.")
            return True
        stop_event.wait(poll_interval)
    return False


#* --- Process Creation ---
def get_service_args(config: "SupervisorConfig") -> List[str]:
    """Returns the command line that starts the database engine in the foreground."""
    return run_as_prefix(config) + [
        str(config.pg_binpath / "postgres"),
        "-c", f"config-file={config.pg_config}",
        "-c", f"listen-addresses={config.pg_listen}",
    ]

def start_service(config: "SupervisorConfig") -> subprocess.Popen:
    """Starts the database engine and returns its handle."""
    return launch_process(get_service_args(config), "postgres")


#* --- Process Status ---
def is_running(proc: Optional[subprocess.Popen]) -> bool:
    return proc is not None and proc.poll() is None

def terminate(proc: Optional[subprocess.Popen], name: str) -> None:
    """Sends SIGTERM to a child if it is still running."""
    if not is_running(proc):
        return
    log.info(f"Sending SIGTERM to {name} (PID {proc.pid}).")
    try:
        proc.send_signal(signal.SIGTERM)
    except ProcessLookupError:
        log.debug(f"Process {name} (PID {proc.pid}) already exited.")

def describe_exit(proc: subprocess.Popen) -> str:
    code = proc.returncode
    if code is not None and code < 0:
        return f"killed by signal {-code}"
    return f"exit status {code}"
