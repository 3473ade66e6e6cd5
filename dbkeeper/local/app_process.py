import logging
import subprocess
import threading
from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig

log = logging.getLogger(__name__)


def run_as_prefix(config: "SupervisorConfig") -> List[str]:
    """
    Returns the command prefix that runs a tool as the database's service user.

    :param config: The supervisor configuration.
    :return list: ['sudo', '-u', <user>] or an empty list when no service user is configured.
    """
    if config.service_user:
        return ["sudo", "-u", config.service_user]
    return []


def _relay_stream(stream, proc_logger: logging.Logger) -> None:
    """Forwards each non-empty line of a child's output stream until EOF."""
    with stream:
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    proc_logger.info(text)
        except (OSError, ValueError) as e:
            proc_logger.debug(f"Output relay stopped: {e}")


def relay_output(process: subprocess.Popen, process_name: str) -> List[threading.Thread]:
    """
    Drains a child's stdout and stderr on daemon threads into the 'proc.<name>' logger.

    postgres and confd both log to stderr in normal operation, so both streams
    are relayed at INFO. An undrained pipe would eventually block the child.

    :param process: A child started with stdout/stderr pipes.
    :param process_name: Names the logger the lines go to.
    :return: The started relay threads.
    """
    proc_logger = logging.getLogger(f"proc.{process_name}")
    threads = []
    for stream in (process.stdout, process.stderr):
        if stream is None:
            continue
        thread = threading.Thread(target=_relay_stream, args=(stream, proc_logger),
                                  name=f"{process_name}-output", daemon=True)
        thread.start()
        threads.append(thread)
    return threads


def launch_process(args: Sequence[str], process_name: str) -> subprocess.Popen:
    """
    Launches a long-running child process with its output streamed to the log.

    The child gets its own session so a terminal Ctrl+C reaches the supervisor
    only; the supervisor then decides how to stop it.

    :param args: The full command line.
    :param process_name: The logical name of the process for logging context.
    :return subprocess.Popen: The handle of the started process.
    :raises OSError: If the executable cannot be started.
    """
    log.info(f"Starting process: {process_name}...")
    try:
        process = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        log.critical(f"Failed to start process '{process_name}': {e}")
        raise
    relay_output(process, process_name)
    log.info(f"{process_name} started with PID: {process.pid}")
    return process


def run_command(args: Sequence[str], process_name: str) -> subprocess.CompletedProcess:
    """
    Runs a short-lived tool to completion, logging its output under 'proc.<name>'.

    :param args: The full command line.
    :param process_name: The logical name of the tool for logging context.
    :return subprocess.CompletedProcess: The finished process, with text stdout/stderr.
    :raises OSError: If the executable cannot be started.
    """
    log.debug(f"Running {process_name}: {' '.join(args)}")
    result = subprocess.run(list(args), capture_output=True, text=True, stdin=subprocess.DEVNULL)
    proc_logger = logging.getLogger(f"proc.{process_name}")
    for stream in (result.stdout, result.stderr):
        for line in (stream or "").splitlines():
            if line.strip():
                proc_logger.debug(line.rstrip())
    return result
