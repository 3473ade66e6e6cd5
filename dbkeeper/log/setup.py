import sys
import logging

SUPERVISOR_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
CHILD_LOGGER_PREFIX = 'proc.'


class MainFormatter(logging.Formatter):
    """
    Formats supervisor records with timestamp, level and logger name.

    Lines relayed from postgres, confd or wal-e arrive on 'proc.<name>' loggers
    and already carry the tool's own prefix, so they are printed untouched.
    """

    def __init__(self) -> None:
        super().__init__(fmt=SUPERVISOR_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        if record.name.startswith(CHILD_LOGGER_PREFIX):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Points the root logger at stdout, where the container runtime collects it.
    Any handler left by the pre-setup `basicConfig` call is dropped first.

    :param console_level: The level for both the root logger and the stdout handler.
    """
    root = logging.getLogger()
    root.setLevel(console_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(console_level)
    stdout_handler.setFormatter(MainFormatter())
    root.addHandler(stdout_handler)

    # requests/urllib3 are chatty at DEBUG on every poll of the store.
    logging.getLogger("urllib3").setLevel(max(console_level, logging.WARNING))


def parse_log_level(name: str) -> int:
    """Maps a level name such as 'DEBUG' to its logging constant, defaulting to INFO."""
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO
