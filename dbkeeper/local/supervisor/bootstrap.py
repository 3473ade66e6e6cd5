"""
The init-or-restore decision made once per data directory.

The engine walks AWAITING_DEPENDENCIES -> SEEDING_DEFAULTS -> DECIDING_INIT ->
RESTORING | FRESH_INIT -> READY. The data directory marker is written at the end
of both branches and before the database is started; a present marker sends the
engine straight to READY.
"""
import os
import enum
import shutil
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, List, NamedTuple, Optional

from dbkeeper.local import app_process
from dbkeeper.local.config_client import EtcdClient, SetResult
from dbkeeper.local.errors import BackupToolError, ConfigWriteError, RestoreError, SupervisorError
from dbkeeper.local.supervisor import persistence

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig
    from dbkeeper.local.external import BackupTool, TemplateRenderer

log = logging.getLogger(__name__)


class BootstrapState(enum.Enum):
    AWAITING_DEPENDENCIES = "awaiting_dependencies"
    SEEDING_DEFAULTS = "seeding_defaults"
    DECIDING_INIT = "deciding_init"
    RESTORING = "restoring"
    FRESH_INIT = "fresh_init"
    READY = "ready"


class BootstrapOutcome(NamedTuple):
    """What the rest of the supervisor needs to know once the data directory is settled."""

    decision: BootstrapState  # RESTORING, FRESH_INIT, or READY when the marker was already there.
    initial_backup_required: bool


class BootstrapEngine:
    """Settles the store defaults and the data directory before the database starts."""

    def __init__(
        self,
        config: "SupervisorConfig",
        store: EtcdClient,
        renderer: "TemplateRenderer",
        backups: "BackupTool",
        stop_event: threading.Event,
    ) -> None:
        self.config = config
        self.store = store
        self.renderer = renderer
        self.backups = backups
        self.stop_event = stop_event
        self.state = BootstrapState.AWAITING_DEPENDENCIES
        self.history: List[BootstrapState] = [self.state]

    def _transition(self, state: BootstrapState) -> None:
        log.debug(f"Bootstrap: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> Optional[BootstrapOutcome]:
        """
        Runs the whole bootstrap sequence.

        :return: The outcome, or None if a shutdown was requested during a wait.
        :raises ConfigWriteError: If a default cannot be seeded.
        :raises RestoreError: If restoring from a backup fails.
        :raises BackupToolError: If the backup catalog cannot be listed.
        """
        if not self.await_store():
            return None
        self._transition(BootstrapState.SEEDING_DEFAULTS)
        self.seed_defaults()
        # The renderer needs the seeded keys to succeed, so it is awaited after seeding.
        self._transition(BootstrapState.AWAITING_DEPENDENCIES)
        if not self.renderer.wait_until_rendered(self.config.poll_interval, self.stop_event):
            return None
        return self.decide_init()

    #* --- Dependencies ---
    def await_store(self) -> bool:
        """Waits for the store, then lets keys left by a crashed predecessor expire."""
        if not self.store.wait_available(self.config.poll_interval, self.stop_event):
            return False
        pause = self.config.stale_key_pause
        log.info(f"Waiting {pause}s for etcd to discard potentially stale values...")
        return not self.stop_event.wait(pause)

    #* --- Defaults ---
    def seed_defaults(self) -> None:
        """
        Writes each default key unless it already exists.

        :raises ConfigWriteError: On the first failure other than 'already exists'.
        """
        for key, value in self.config.seed_defaults.items():
            path = f"{self.config.etcd_path}/{key}"
            result = self.store.set_if_absent(path, value)
            if result is SetResult.CREATED:
                log.info(f"Set default {path}.")
            elif result is SetResult.ALREADY_EXISTS:
                log.debug(f"{path} already set; keeping the existing value.")
            else:
                raise ConfigWriteError(f"Failed to set default {path}: {self.store.last_error}")

    #* --- Init or Restore ---
    def decide_init(self) -> BootstrapOutcome:
        """Chooses between a restore and a fresh init, unless the data directory was already settled."""
        marker = self.config.initialized_marker
        if persistence.is_initialized(marker):
            log.info(f"Existing data directory found (marker '{marker}'). Skipping init/restore.")
            self._transition(BootstrapState.READY)
            return BootstrapOutcome(BootstrapState.READY, initial_backup_required=False)

        self._transition(BootstrapState.DECIDING_INIT)
        entries = self.backups.count_backups()
        # The first catalog line is a header.
        if entries > 1:
            log.info(f"Found {entries - 1} backup(s). Restoring from the latest...")
            self._transition(BootstrapState.RESTORING)
            self.restore()
            decision, initial_backup = BootstrapState.RESTORING, False
        else:
            log.info("No backups found. An initial backup will be taken once the database is up.")
            self._transition(BootstrapState.FRESH_INIT)
            decision, initial_backup = BootstrapState.FRESH_INIT, True

        try:
            persistence.mark_initialized(marker)
        except OSError as e:
            raise SupervisorError(f"Could not write data directory marker '{marker}': {e}") from e
        self._transition(BootstrapState.READY)
        return BootstrapOutcome(decision, initial_backup_required=initial_backup)

    def restore(self) -> None:
        """
        Replaces the data directory with the latest backup and arms log replay.

        :raises RestoreError: On any filesystem or backup tool failure. There is
            no fallback to a fresh init: backups exist and must not be ignored.
        """
        data_dir = self.config.pg_data_dir
        try:
            if data_dir.exists():
                log.warning(f"Removing existing contents of '{data_dir}'.")
                shutil.rmtree(data_dir)
            data_dir.mkdir(parents=True, mode=0o700)
            data_dir.chmod(0o700)  # mkdir's mode is masked by the umask.
            self._disable_copy_on_write(data_dir)
            self._hand_over(data_dir)

            self.backups.fetch(data_dir, "LATEST")

            persistence.write_recovery_conf(self.config.recovery_conf_path, self.backups.command_line)
            self._hand_over(self.config.recovery_conf_path)
        except (OSError, LookupError, BackupToolError) as e:
            raise RestoreError(f"Restore into '{data_dir}' failed: {e}") from e
        log.info("Restore complete. The database will replay archived logs on start.")

    def _disable_copy_on_write(self, data_dir: Path) -> None:
        """Sets the no-CoW attribute where the filesystem supports it (btrfs); anything else is ignored."""
        try:
            result = app_process.run_command(["chattr", "-R", "+C", str(data_dir)], "chattr")
        except OSError as e:
            log.debug(f"chattr unavailable, leaving copy-on-write as is: {e}")
            return
        if result.returncode != 0:
            log.debug(f"Filesystem does not support disabling copy-on-write: {result.stderr.strip()}")

    def _hand_over(self, path: Path) -> None:
        """Gives a path to the service user, when running as root with one configured."""
        user = self.config.service_user
        if user and os.geteuid() == 0:
            shutil.chown(path, user=user, group=user)
