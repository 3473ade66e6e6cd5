import enum
import logging
import threading
from typing import TYPE_CHECKING, Callable

from dbkeeper.local.errors import BackupToolError, LivenessLostError
from dbkeeper.local.supervisor import persistence
from dbkeeper.local.supervisor.process_utils import is_port_listening

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig
    from dbkeeper.local.config_client import EtcdClient
    from dbkeeper.local.external import BackupTool

log = logging.getLogger(__name__)


class BackupCycle(enum.Enum):
    NOT_DUE = "not_due"
    SKIPPED_RECOVERING = "skipped_recovering"
    BACKED_UP = "backed_up"
    FAILED = "failed"


class BackupScheduler:
    """
    Counts publisher iterations and takes a backup every `backup_frequency` ticks.

    The count is in loop iterations, not wall-clock time. The counter resets
    when a cycle is skipped because the database is still recovering, so a long
    recovery pushes the next backup a full period out rather than retrying on
    every tick.
    """

    def __init__(self, config: "SupervisorConfig", backups: "BackupTool") -> None:
        self.config = config
        self.backups = backups
        self.frequency = config.backup_frequency
        self.counter = 0

    def take_initial_backup(self) -> bool:
        """
        Takes the one unconditional backup owed after a fresh init.

        A failure is logged, not raised: the database is already serving and the
        next scheduled cycle will try again.
        """
        log.info("Performing an initial backup...")
        try:
            self.backups.push(self.config.pg_data_dir)
            return True
        except BackupToolError as e:
            log.error(f"Initial backup failed: {e}")
            return False

    def tick(self) -> BackupCycle:
        self.counter += 1
        if self.counter < self.frequency:
            return BackupCycle.NOT_DUE
        self.counter = 0

        if persistence.is_recovering(self.config.recovery_conf_path):
            log.info("Database is currently recovering from a backup. Skipping this backup cycle...")
            return BackupCycle.SKIPPED_RECOVERING

        try:
            self.backups.push(self.config.pg_data_dir)
            self.backups.delete_retain(self.config.backups_to_retain)
        except BackupToolError as e:
            log.error(f"Scheduled backup failed: {e}")
            return BackupCycle.FAILED
        return BackupCycle.BACKED_UP


class DiscoveryPublisher:
    """
    Republishes the service's host and port with a TTL while the advertised port listens.

    Runs on the supervisor thread and drives the BackupScheduler on the same clock.
    """

    def __init__(
        self,
        config: "SupervisorConfig",
        store: "EtcdClient",
        scheduler: BackupScheduler,
        stop_event: threading.Event,
        probe: Callable[[int], bool] = is_port_listening,
    ) -> None:
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self.stop_event = stop_event
        self.probe = probe
        self.iterations = 0

    def publish(self) -> bool:
        """Refreshes the registration record. Failures only cost this cycle."""
        base = self.config.etcd_path
        ttl = self.config.etcd_ttl
        host_ok = self.store.set(f"{base}/host", self.config.host, ttl=ttl)
        port_ok = self.store.set(f"{base}/port", str(self.config.external_port), ttl=ttl)
        if not (host_ok and port_ok):
            log.warning(f"Could not refresh registration under {base}; it expires in {ttl}s unless the next refresh succeeds.")
            return False
        return True

    def run(self) -> None:
        """
        Publishes until a shutdown is requested.

        :raises LivenessLostError: As soon as the advertised port is seen not listening.
        """
        port = self.config.publish_port
        interval = self.config.poll_interval
        log.info(f"Publishing {self.config.host}:{self.config.external_port} under {self.config.etcd_path} every {interval}s.")

        while not self.stop_event.is_set():
            if not self.probe(port):
                raise LivenessLostError(f"Port {port} is no longer listening.")
            self.publish()
            self.scheduler.tick()
            self.iterations += 1
            self.stop_event.wait(interval)

        log.info("Discovery publisher stopped.")
