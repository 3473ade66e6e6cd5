import logging
from pathlib import Path

import dbkeeper.settings as default_settings

log = logging.getLogger(__name__)


def is_initialized(marker_path: Path) -> bool:
    """Checks if the data directory has already been through the init-or-restore decision."""
    return marker_path.exists()

def mark_initialized(marker_path: Path) -> None:
    """
    Writes the data directory marker.

    Tolerates an existing marker, so a run that crashed after a restore but
    before marking can repeat the whole path without tripping over it.

    :raises OSError: If the marker cannot be written.
    """
    marker_path.parent.mkdir(parents=True, exist_ok=True)
    marker_path.touch(exist_ok=True)
    log.info(f"Data directory marked as initialized at '{marker_path}'.")

def is_recovering(recovery_conf_path: Path) -> bool:
    """Checks if the database engine is still replaying logs from a restored backup."""
    return recovery_conf_path.exists()

def write_recovery_conf(recovery_conf_path: Path, restore_command_prefix: str) -> None:
    """
    Atomically writes the recovery instructions the database engine reads on start.

    :param recovery_conf_path: Destination inside the data directory.
    :param restore_command_prefix: The backup tool invocation, without the 'wal-fetch' action.
    :raises OSError: If the file cannot be written.
    """
    content = default_settings.RECOVERY_CONF_TEMPLATE.format(backup_command=restore_command_prefix)
    temp_path = recovery_conf_path.with_suffix(".tmp")
    try:
        temp_path.write_text(content)
        temp_path.replace(recovery_conf_path)
    finally:
        temp_path.unlink(missing_ok=True)
    log.info(f"Recovery instructions written to '{recovery_conf_path}'.")
