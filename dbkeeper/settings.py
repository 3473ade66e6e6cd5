"""
This module contains the default configuration settings for the dbkeeper supervisor.
It defines the environment variable names, their defaults, and the seed values
written to the configuration store on first boot.

Nothing here is read directly by the supervisor at runtime; `local.config.load_config`
resolves these defaults against the environment once and freezes the result.
"""

from dotenv import load_dotenv

# Load environment variables from .env file. The real environment wins.
load_dotenv(override=False)

#* --- Host & Discovery ---
DEFAULT_HOST = "127.0.0.1"
DEFAULT_ETCD_PORT = 4001
DEFAULT_ETCD_PATH = "/dbkeeper/database"
DEFAULT_ETCD_TTL = 10  # seconds
DEFAULT_SERVICE_PORT = 5432
LISTEN_POLL_INTERVAL = 1  # seconds between port checks while waiting for the engine

#* --- Backups ---
DEFAULT_BUCKET_NAME = "db_wal"
DEFAULT_BACKUPS_TO_RETAIN = 5
DEFAULT_BACKUP_FREQUENCY = 2160  # loop iterations, each ETCD_TTL / 2 seconds
DEFAULT_BACKUP_COMMAND = "envdir /etc/wal-e.d/env wal-e"

#* --- Database Engine ---
DEFAULT_PG_DATA_DIR = "/var/lib/postgresql/data"
DEFAULT_PG_CONFIG = "/etc/postgresql/postgresql.conf"
DEFAULT_PG_BINPATH = "/usr/lib/postgresql/bin"
DEFAULT_PG_LISTEN = "*"
DEFAULT_PG_INITIALIZED_MARKER = "/var/lib/postgresql/initialized"
DEFAULT_SERVICE_USER = "postgres"
RECOVERY_CONF_NAME = "recovery.conf"

#* --- Templating ---
DEFAULT_CONFD_EXECUTABLE = "confd"
DEFAULT_CONFD_CONFIG = "/app/confd.toml"

#* --- Logging ---
DEFAULT_LOG_LEVEL = "INFO"
PROCESS_TITLE = "dbkeeper - Supervisor"

#* --- Seed Defaults ---
# Maps the store key (relative to ETCD_PATH) to (environment variable, default value).
# Order matters only for log readability.
SEED_DEFAULTS = {
    "engine": ("DB_ENGINE", "postgresql_psycopg2"),
    "adminUser": ("DB_ADMIN_USER", "postgres"),
    "adminPass": ("DB_ADMIN_PASS", "changeme123"),
    "user": ("DB_USER", "dbkeeper"),
    "password": ("DB_PASS", "changeme123"),
    "name": ("DB_NAME", "dbkeeper"),
    "bucketName": ("BUCKET_NAME", DEFAULT_BUCKET_NAME),
}

#* --- Recovery Template ---
RECOVERY_CONF_TEMPLATE = """\
# This file is auto-generated by dbkeeper. The database removes it once recovery completes.
restore_command = '{backup_command} wal-fetch "%f" "%p"'
"""
