import shlex
import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, List

from dbkeeper.local.errors import BackupToolError
from dbkeeper.local import app_process

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig

log = logging.getLogger(__name__)


class BackupTool:
    """
    Drives WAL-E for base backups, restores, and pruning.

    Only the number of catalog entries is ever looked at; backup contents are
    the tool's business.
    """

    def __init__(self, config: "SupervisorConfig") -> None:
        self.config = config

    @property
    def command_line(self) -> str:
        """The tool invocation as the database engine should run it from recovery.conf."""
        return shlex.join(self.config.backup_command)

    def _run(self, action: str, *args: str) -> subprocess.CompletedProcess:
        cmd = app_process.run_as_prefix(self.config) + list(self.config.backup_command) + [action, *args]
        try:
            result = app_process.run_command(cmd, "wal-e")
        except OSError as e:
            raise BackupToolError(action, 127, str(e)) from e
        if result.returncode != 0:
            raise BackupToolError(action, result.returncode, result.stderr or "")
        return result

    def list_backups(self) -> List[str]:
        """Returns the raw catalog lines, including the header row when the tool prints one."""
        result = self._run("backup-list")
        return [line for line in result.stdout.splitlines() if line.strip()]

    def count_backups(self) -> int:
        return len(self.list_backups())

    def push(self, data_dir: Path) -> None:
        log.info(f"Pushing a base backup of '{data_dir}'...")
        self._run("backup-push", str(data_dir))
        log.info("Base backup pushed.")

    def fetch(self, data_dir: Path, backup_name: str = "LATEST") -> None:
        log.info(f"Fetching backup '{backup_name}' into '{data_dir}'...")
        self._run("backup-fetch", str(data_dir), backup_name)
        log.info(f"Backup '{backup_name}' fetched.")

    def delete_retain(self, retain: int) -> None:
        log.info(f"Pruning backups, retaining the {retain} most recent...")
        self._run("delete", "--confirm", "retain", str(retain))
