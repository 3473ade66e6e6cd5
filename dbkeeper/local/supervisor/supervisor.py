import time
import logging
import threading
import subprocess
from typing import Callable, Optional

import dbkeeper.settings as default_settings
from dbkeeper.local.config import SupervisorConfig
from dbkeeper.local.config_client import EtcdClient
from dbkeeper.local.errors import SupervisorError
from dbkeeper.local.external import BackupTool, TemplateRenderer
from dbkeeper.local.supervisor import process_utils, shutdown
from dbkeeper.local.supervisor.background_tasks import BackupScheduler, DiscoveryPublisher
from dbkeeper.local.supervisor.bootstrap import BootstrapEngine, BootstrapOutcome

log = logging.getLogger(__name__)


class Supervisor:
    """
    Runs one database instance from first boot to shutdown.

    Bootstraps the data directory, starts the engine and the renderer watch,
    then either publishes the service for discovery (when an external port is
    configured) or simply waits on the engine.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        store: Optional[EtcdClient] = None,
        renderer: Optional[TemplateRenderer] = None,
        backups: Optional[BackupTool] = None,
        probe: Callable[[int], bool] = process_utils.is_port_listening,
        start_service: Callable[[SupervisorConfig], subprocess.Popen] = process_utils.start_service,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = config
        self.store = store or EtcdClient(config.etcd_host, config.etcd_port)
        self.renderer = renderer or TemplateRenderer(config)
        self.backups = backups or BackupTool(config)
        self.probe = probe
        self._start_service = start_service

        self.shutdown_signal_received = stop_event or threading.Event()
        self.bootstrap = BootstrapEngine(config, self.store, self.renderer, self.backups, self.shutdown_signal_received)
        self.scheduler = BackupScheduler(config, self.backups)
        self.publisher = DiscoveryPublisher(config, self.store, self.scheduler, self.shutdown_signal_received, probe=probe)

        self.service: Optional[subprocess.Popen] = None
        self.renderer_watch: Optional[subprocess.Popen] = None
        self.outcome: Optional[BootstrapOutcome] = None

    def run(self, handle_signals: bool = True) -> int:
        """
        Runs the supervisor until shutdown or a fatal error.

        :param handle_signals: Install SIGINT/SIGTERM handlers. Only possible on the main thread.
        :return: The process exit code: 0 after a requested shutdown, 1 on any fatal error.
        """
        log.info("=" * 20 + " Supervisor Starting " + "=" * 20)
        start_time = time.monotonic()
        if handle_signals:
            shutdown.install_signal_handlers(self.shutdown_signal_received)
        try:
            return self._run()
        except SupervisorError as e:
            log.critical(f"{e}")
            self.stop()
            return e.exit_code
        except Exception as e:
            log.critical(f"Unexpected error in supervisor: {e}", exc_info=True)
            self.stop()
            return 1
        finally:
            if handle_signals:
                shutdown.restore_default_handlers()
            log.info(f"Supervisor stopped after {time.strftime('%H:%M:%S', time.gmtime(time.monotonic() - start_time))}.")

    def _run(self) -> int:
        self.outcome = self.bootstrap.run()
        if self.outcome is None or self.shutdown_signal_received.is_set():
            return self.stop()

        self._launch_children()

        if not process_utils.await_listening(self.config.port, default_settings.LISTEN_POLL_INTERVAL,
                                             self.shutdown_signal_received, probe=self._service_probe):
            return self.stop()

        # Picks up values that only became final after the init/restore decision.
        code = self.renderer.render_once()
        if code != 0:
            log.warning(f"One-time template refresh exited with status {code}; the confd watch will retry.")

        if self.outcome.initial_backup_required:
            self.scheduler.take_initial_backup()

        if not self.config.publishing_enabled:
            log.info("EXTERNAL_PORT is not set. Service discovery is disabled.")
            return self._wait_for_service()

        if not process_utils.await_listening(self.config.publish_port, default_settings.LISTEN_POLL_INTERVAL,
                                             self.shutdown_signal_received, probe=self._service_probe):
            return self.stop()

        self.publisher.run()
        return self.stop()

    def _launch_children(self) -> None:
        try:
            self.service = self._start_service(self.config)
        except OSError as e:
            raise SupervisorError(f"Could not start the database engine: {e}") from e
        try:
            self.renderer_watch = self.renderer.start_watch()
        except OSError as e:
            # The engine runs fine on the templates already rendered.
            log.error(f"Could not start the confd watch: {e}")

    def _service_probe(self, port: int) -> bool:
        """Port probe that gives up when the engine has already exited."""
        if self.service is not None and not process_utils.is_running(self.service):
            raise SupervisorError(f"Database engine exited while waiting for port {port} "
                                  f"({process_utils.describe_exit(self.service)}).")
        return self.probe(port)

    def _wait_for_service(self) -> int:
        """Waits on the engine alone, until a shutdown is requested or it exits by itself."""
        while not self.shutdown_signal_received.wait(default_settings.LISTEN_POLL_INTERVAL):
            if not process_utils.is_running(self.service):
                raise SupervisorError(f"Database engine exited unexpectedly ({process_utils.describe_exit(self.service)}).")
        return self.stop()

    def stop(self) -> int:
        """Stops the engine and the renderer watch, waiting for the engine to exit."""
        self.shutdown_signal_received.set()
        shutdown.graceful_shutdown(self.service, self.renderer_watch)
        log.info("Supervisor shutdown sequence completed.")
        return 0
