import logging
import threading
import subprocess
from typing import TYPE_CHECKING, List

from dbkeeper.local import app_process

if TYPE_CHECKING:
    from dbkeeper.local.config import SupervisorConfig

log = logging.getLogger(__name__)

# Conventional shell status for "command not found".
COMMAND_NOT_FOUND = 127


class TemplateRenderer:
    """Drives confd, which renders configuration files from the store's keys."""

    def __init__(self, config: "SupervisorConfig") -> None:
        self.config = config

    def _args(self, onetime: bool) -> List[str]:
        args = [self.config.confd_executable]
        if onetime:
            args.append("-onetime")
        args += ["-node", self.config.etcd_endpoint, "-config-file", str(self.config.confd_config)]
        return args

    def render_once(self) -> int:
        """
        Renders all templates a single time from the current store state.

        :return: confd's exit code; non-zero means the templates are not in place yet.
        """
        try:
            result = app_process.run_command(self._args(onetime=True), "confd")
        except OSError as e:
            log.error(f"Could not run confd: {e}")
            return COMMAND_NOT_FOUND
        return result.returncode

    def wait_until_rendered(self, retry_interval: float, stop_event: threading.Event) -> bool:
        """
        Retries a one-time render until it succeeds.

        :return: True once rendered, False if shutdown was requested first.
        """
        while not stop_event.is_set():
            code = self.render_once()
            if code == 0:
                log.info("confd wrote the initial templates.")
                return True
            log.info(f"waiting for confd to write initial templates (exit status {code})...")
            stop_event.wait(retry_interval)
        return False

    def start_watch(self) -> subprocess.Popen:
        """Starts confd in the background to keep the templates in sync with the store."""
        return app_process.launch_process(self._args(onetime=False), "confd")
