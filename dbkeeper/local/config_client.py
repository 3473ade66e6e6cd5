import enum
import logging
import threading
from typing import Any, Dict, Optional

import requests

from dbkeeper.local.errors import ConfigStoreError

log = logging.getLogger(__name__)

# etcd v2 error code for "Key already exists" on a prevExist=false write.
ETCD_KEY_EXISTS = 105


class SetResult(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    ERROR = "error"


class EtcdClient:
    """
    A thin client for the etcd v2 keys API.

    Only the three calls the supervisor needs are exposed: list, create
    (set-if-absent), and set with a TTL. No watches are used; callers poll.
    """

    def __init__(self, host: str, port: int, timeout: float = 2.0, session: Optional[requests.Session] = None) -> None:
        self.base_url = f"http://{host}:{port}/v2/keys"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_error: Optional[str] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def list(self, path: str = "/") -> Dict[str, Any]:
        """
        Lists a key or directory.

        :param path: The key path, relative to the keyspace root.
        :return: The decoded etcd response body.
        :raises ConfigStoreError: On any transport, HTTP, or decoding failure.
        """
        try:
            response = self.session.get(self._url(path), timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ConfigStoreError(f"Failed to list '{path}' at {self.base_url}: {e}") from e
        except ValueError as e:
            raise ConfigStoreError(f"Malformed response listing '{path}': {e}") from e

    def is_available(self) -> bool:
        try:
            self.list("/")
            return True
        except ConfigStoreError as e:
            self.last_error = str(e)
            return False

    def wait_available(self, retry_interval: float, stop_event: threading.Event) -> bool:
        """
        Blocks until the store answers a basic listing call.

        There is no retry limit; the supervisor cannot do anything useful without the store.

        :param retry_interval: Seconds between attempts.
        :param stop_event: Set by the signal handler to abandon the wait.
        :return: True once available, False if shutdown was requested first.
        """
        while not stop_event.is_set():
            if self.is_available():
                log.info(f"etcd is available at {self.base_url}.")
                return True
            log.info(f"waiting for etcd at {self.base_url}...")
            log.debug(f"Last etcd error: {self.last_error}")
            stop_event.wait(retry_interval)
        return False

    def set_if_absent(self, path: str, value: str) -> SetResult:
        """
        Creates a key only if it does not exist yet.

        :return: CREATED, ALREADY_EXISTS, or ERROR. The existing value is never touched.
        """
        try:
            response = self.session.put(
                self._url(path),
                params={"prevExist": "false"},
                data={"value": value},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            self.last_error = f"Failed to create '{path}': {e}"
            return SetResult.ERROR

        if response.status_code in (200, 201):
            return SetResult.CREATED

        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("errorCode") == ETCD_KEY_EXISTS:
            return SetResult.ALREADY_EXISTS

        self.last_error = f"Failed to create '{path}': HTTP {response.status_code} {response.text.strip()}"
        return SetResult.ERROR

    def set(self, path: str, value: str, ttl: Optional[int] = None) -> bool:
        """
        Best-effort write, used to refresh the service registration.

        A failure is logged and reported but never raised: if refreshes keep
        failing the key expires, which is how consumers learn the service is gone.
        """
        data: Dict[str, Any] = {"value": value}
        if ttl is not None:
            data["ttl"] = ttl
        try:
            response = self.session.put(self._url(path), data=data, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            self.last_error = f"Failed to set '{path}': {e}"
            log.warning(self.last_error)
            return False
