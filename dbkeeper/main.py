import sys
import logging

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [dbkeeper] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("dbkeeper")

import setproctitle

import dbkeeper.settings as default_settings
from dbkeeper.local.config import load_config
from dbkeeper.local.errors import ConfigurationError
from dbkeeper.log.setup import parse_log_level, setup_logging
from dbkeeper.local.supervisor import Supervisor


def main() -> None:
    """The entry point for the supervisor process."""
    setproctitle.setproctitle(default_settings.PROCESS_TITLE)

    try:
        config = load_config()
    except ConfigurationError as e:
        log.critical(f"Invalid configuration: {e}")
        sys.exit(e.exit_code)

    setup_logging(parse_log_level(config.log_level))

    supervisor = Supervisor(config)
    sys.exit(supervisor.run())

if __name__ == "__main__":
    main()
