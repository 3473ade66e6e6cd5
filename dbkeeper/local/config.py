import os
import shlex
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional, Tuple

import dbkeeper.settings as default_settings
from dbkeeper.local.errors import ConfigurationError

log = logging.getLogger(__name__)


class SupervisorConfig(NamedTuple):
    """
    Typed, immutable configuration for one supervisor run.

    Built once by `load_config` and passed to every component. Nothing in the
    supervisor reads the environment after this object exists.
    """

    host: str
    etcd_host: str
    etcd_port: int
    etcd_path: str
    etcd_ttl: int
    external_port: Optional[int]
    port: int
    publish_port: int
    backups_to_retain: int
    backup_frequency: int
    backup_command: Tuple[str, ...]
    seed_defaults: Mapping[str, str]
    pg_data_dir: Path
    pg_config: Path
    pg_binpath: Path
    pg_listen: str
    initialized_marker: Path
    service_user: Optional[str]
    confd_executable: str
    confd_config: Path
    log_level: str

    @property
    def etcd_endpoint(self) -> str:
        """The store address in the 'host:port' form the renderer expects."""
        return f"{self.etcd_host}:{self.etcd_port}"

    @property
    def etcd_url(self) -> str:
        return f"http://{self.etcd_endpoint}"

    @property
    def poll_interval(self) -> float:
        """Half the TTL: the registration must be refreshed well before it expires."""
        return self.etcd_ttl / 2

    @property
    def stale_key_pause(self) -> int:
        return self.etcd_ttl + 1

    @property
    def recovery_conf_path(self) -> Path:
        return self.pg_data_dir / default_settings.RECOVERY_CONF_NAME

    @property
    def publishing_enabled(self) -> bool:
        return self.external_port is not None


def _get_str(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value


def _get_int(env: Mapping[str, str], key: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'.") from None
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {value}.")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> SupervisorConfig:
    """
    Resolves the supervisor configuration from environment-style inputs.

    :param environ: The mapping to read from. Defaults to `os.environ`.
    :return: A frozen SupervisorConfig.
    :raises ConfigurationError: If a numeric option cannot be parsed.
    """
    env = os.environ if environ is None else environ

    host = _get_str(env, "HOST", default_settings.DEFAULT_HOST)
    port = _get_int(env, "PORT", default_settings.DEFAULT_SERVICE_PORT, minimum=1)

    seeds = {
        key: _get_str(env, env_key, default)
        for key, (env_key, default) in default_settings.SEED_DEFAULTS.items()
    }

    service_user = env.get("SERVICE_USER", default_settings.DEFAULT_SERVICE_USER) or None

    config = SupervisorConfig(
        host=host,
        etcd_host=_get_str(env, "ETCD_HOST", host),
        etcd_port=_get_int(env, "ETCD_PORT", default_settings.DEFAULT_ETCD_PORT, minimum=1),
        etcd_path=_get_str(env, "ETCD_PATH", default_settings.DEFAULT_ETCD_PATH).rstrip("/"),
        etcd_ttl=_get_int(env, "ETCD_TTL", default_settings.DEFAULT_ETCD_TTL, minimum=1),
        external_port=_get_int(env, "EXTERNAL_PORT", None, minimum=1),
        port=port,
        publish_port=_get_int(env, "PUBLISH", port, minimum=1),
        backups_to_retain=_get_int(env, "BACKUPS_TO_RETAIN", default_settings.DEFAULT_BACKUPS_TO_RETAIN, minimum=1),
        backup_frequency=_get_int(env, "BACKUP_FREQUENCY", default_settings.DEFAULT_BACKUP_FREQUENCY, minimum=1),
        backup_command=tuple(shlex.split(_get_str(env, "BACKUP_COMMAND", default_settings.DEFAULT_BACKUP_COMMAND))),
        seed_defaults=MappingProxyType(seeds),
        pg_data_dir=Path(_get_str(env, "PG_DATA_DIR", default_settings.DEFAULT_PG_DATA_DIR)),
        pg_config=Path(_get_str(env, "PG_CONFIG", default_settings.DEFAULT_PG_CONFIG)),
        pg_binpath=Path(_get_str(env, "PG_BINPATH", default_settings.DEFAULT_PG_BINPATH)),
        pg_listen=_get_str(env, "PG_LISTEN", default_settings.DEFAULT_PG_LISTEN),
        initialized_marker=Path(_get_str(env, "PG_INITIALIZED_MARKER", default_settings.DEFAULT_PG_INITIALIZED_MARKER)),
        service_user=service_user,
        confd_executable=_get_str(env, "CONFD_EXECUTABLE", default_settings.DEFAULT_CONFD_EXECUTABLE),
        confd_config=Path(_get_str(env, "CONFD_CONFIG", default_settings.DEFAULT_CONFD_CONFIG)),
        log_level=_get_str(env, "LOG_LEVEL", default_settings.DEFAULT_LOG_LEVEL).upper(),
    )

    if not config.backup_command:
        raise ConfigurationError("BACKUP_COMMAND must not be empty.")

    log.debug(f"Resolved configuration: etcd={config.etcd_url}{config.etcd_path}, ttl={config.etcd_ttl}s, "
              f"port={config.port}, publish={config.publish_port}, external={config.external_port}")
    return config
