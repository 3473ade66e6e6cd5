import signal
import logging
import threading
import subprocess
from typing import Optional

from dbkeeper.local.supervisor import process_utils

log = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """
    Routes SIGINT and SIGTERM to the shared shutdown event.

    Every wait in the supervisor is an `Event.wait`, so setting the event wakes
    whichever poll is in progress and the loops unwind on their next check.

    :param stop_event: The event the supervisor's loops wait on.
    """
    def _handler(signum, _frame):
        name = signal.Signals(signum).name
        if stop_event.is_set():
            log.warning(f"Received {name} again; shutdown already in progress.")
            return
        log.info(f"Received {name}. Stopping the supervisor...")
        stop_event.set()

    for sig in HANDLED_SIGNALS:
        signal.signal(sig, _handler)


def restore_default_handlers() -> None:
    for sig in HANDLED_SIGNALS:
        signal.signal(sig, signal.SIG_DFL)


def graceful_shutdown(service: Optional[subprocess.Popen], renderer_watch: Optional[subprocess.Popen] = None) -> None:
    """
    Stops the database engine and waits for it to exit.

    The wait has no timeout: the engine decides how long a clean shutdown takes,
    and killing it early risks a crash recovery on the next start.

    :param service: The database engine handle, or None if it was never started.
    :param renderer_watch: The detached renderer process, stopped once the engine is down.
    """
    if process_utils.is_running(service):
        process_utils.terminate(service, "postgres")
        service.wait()
        log.info(f"postgres (PID {service.pid}) stopped with {process_utils.describe_exit(service)}.")
    elif service is not None:
        log.info(f"postgres (PID {service.pid}) had already exited with {process_utils.describe_exit(service)}.")

    if process_utils.is_running(renderer_watch):
        process_utils.terminate(renderer_watch, "confd")
        try:
            renderer_watch.wait(timeout=5)
        except subprocess.TimeoutExpired:
            log.warning(f"confd (PID {renderer_watch.pid}) did not stop in time. Killing it.")
            renderer_watch.kill()
            renderer_watch.wait()
