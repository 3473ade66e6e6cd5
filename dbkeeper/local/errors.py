"""
Exceptions raised by the supervisor and its collaborators.

Every fatal condition maps to exit code 1. Expected outcomes (a key that already
exists, a failed TTL refresh) are reported as return values, never raised.
"""


class SupervisorError(RuntimeError):
    """Base class for conditions that abort the supervisor."""
    exit_code = 1


class ConfigurationError(SupervisorError):
    """The environment holds a value that cannot be parsed."""


class ConfigStoreError(SupervisorError):
    """The configuration store could not be reached or returned an error."""


class ConfigWriteError(SupervisorError):
    """Seeding a default key failed for a reason other than 'already exists'."""


class BackupToolError(SupervisorError):
    """The backup tool exited with a non-zero status."""

    def __init__(self, action: str, returncode: int, stderr: str = "") -> None:
        self.action = action
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Backup tool '{action}' exited with status {returncode}{detail}")


class RestoreError(SupervisorError):
    """Restoring the data directory from a backup failed."""


class LivenessLostError(SupervisorError):
    """The advertised port stopped listening after having listened."""
