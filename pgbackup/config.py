"""
Runtime configuration for pgbackup.

Everything the backup and restore pipelines need is read once from the
process environment into immutable dataclasses. Components receive a
Settings instance and never look at os.environ themselves.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse, unquote

from dotenv import load_dotenv


DEFAULT_PORT = 5432
DEFAULT_BACKUP_DIR = './backups'
DEFAULT_REGION = 'us-east-005'
DEFAULT_KEEP_LAST = 7
DEFAULT_TIMEOUT = 3600  # seconds
DEFAULT_CRON = '0 3 * * *'
DEFAULT_DEV_COMMAND = 'npm run dev'

URL_SCHEMES = ('postgres', 'postgresql')


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection parameters for the target PostgreSQL database."""

    host: str
    port: int
    username: str
    password: str
    database: str

    def __repr__(self):
        return (
            f"DatabaseConfig(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, database={self.database!r})"
        )


@dataclass(frozen=True)
class RemoteConfig:
    """S3-compatible object storage settings (Backblaze B2, AWS, MinIO)."""

    bucket: str
    endpoint_url: Optional[str] = None
    region: str = DEFAULT_REGION
    access_key: Optional[str] = None
    secret_key: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    """Complete, immutable configuration for one run."""

    database: DatabaseConfig
    remote: Optional[RemoteConfig] = None
    backup_dir: str = DEFAULT_BACKUP_DIR
    keep_last: int = DEFAULT_KEEP_LAST
    dump_timeout: int = DEFAULT_TIMEOUT
    restore_timeout: int = DEFAULT_TIMEOUT
    pg_dump_bin: str = 'pg_dump'
    pg_restore_bin: str = 'pg_restore'
    psql_bin: str = 'psql'
    dev_command: str = DEFAULT_DEV_COMMAND
    backup_cron: str = DEFAULT_CRON
    log_level: str = 'INFO'
    log_dir: Optional[str] = None

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> 'Settings':
        """
        Build settings from an environment mapping.

        Args:
            environ: Mapping of environment variable names to values

        Returns:
            Settings instance

        Raises:
            ConfigError: If database settings are incomplete or any value is malformed
        """
        return cls(
            database=resolve_database(environ),
            remote=resolve_remote(environ),
            backup_dir=_get(environ, 'BACKUP_DIR') or DEFAULT_BACKUP_DIR,
            keep_last=_get_int(environ, 'BACKUP_KEEP_LAST', DEFAULT_KEEP_LAST, minimum=0),
            dump_timeout=_get_int(environ, 'BACKUP_DUMP_TIMEOUT', DEFAULT_TIMEOUT, minimum=1),
            restore_timeout=_get_int(environ, 'BACKUP_RESTORE_TIMEOUT', DEFAULT_TIMEOUT, minimum=1),
            pg_dump_bin=_get(environ, 'PG_DUMP_BIN') or 'pg_dump',
            pg_restore_bin=_get(environ, 'PG_RESTORE_BIN') or 'pg_restore',
            psql_bin=_get(environ, 'PSQL_BIN') or 'psql',
            dev_command=_get(environ, 'DEV_COMMAND') or DEFAULT_DEV_COMMAND,
            backup_cron=_get(environ, 'BACKUP_CRON') or DEFAULT_CRON,
            log_level=_get(environ, 'LOG_LEVEL') or 'INFO',
            log_dir=_get(environ, 'LOG_DIR'),
        )


def load_environment_files(environ: Mapping[str, str], base_dir: str = '.') -> Optional[str]:
    """
    Load .env.<APP_ENV> for non-production runs.

    Variables already present in the environment are not overridden.

    Args:
        environ: Current environment (only APP_ENV is read)
        base_dir: Directory containing the .env files

    Returns:
        Path of the loaded file, or None if nothing was loaded
    """
    env_name = _get(environ, 'APP_ENV') or 'development'
    if env_name == 'production':
        return None

    env_file = os.path.join(base_dir, f".env.{env_name}")
    if not os.path.isfile(env_file):
        return None

    load_dotenv(env_file, override=False)
    return env_file


def resolve_database(environ: Mapping[str, str]) -> DatabaseConfig:
    """
    Resolve connection parameters from discrete DB_* variables and DATABASE_URL.

    Discrete variables win field by field; DATABASE_URL fills in whatever
    is not set. The port defaults to 5432.

    Args:
        environ: Environment mapping

    Returns:
        DatabaseConfig

    Raises:
        ConfigError: If the URL is invalid or host, database or username is missing
    """
    from_url = {}
    url = _get(environ, 'DATABASE_URL')
    if url:
        from_url = parse_database_url(url)

    host = _get(environ, 'DB_HOST') or from_url.get('host')
    username = _get(environ, 'DB_USERNAME') or from_url.get('username')
    password = _get(environ, 'DB_PASSWORD') or from_url.get('password') or ''
    database = _get(environ, 'DB_NAME') or from_url.get('database')

    if _get(environ, 'DB_PORT'):
        port = _get_int(environ, 'DB_PORT', DEFAULT_PORT, minimum=1)
    else:
        port = from_url.get('port') or DEFAULT_PORT

    missing = [
        name for name, value in (
            ('DB_HOST', host),
            ('DB_NAME', database),
            ('DB_USERNAME', username),
        ) if not value
    ]
    if missing:
        raise ConfigError(
            f"Missing database config: {', '.join(missing)} "
            f"(set them directly or provide DATABASE_URL)"
        )

    return DatabaseConfig(
        host=host,
        port=port,
        username=username,
        password=password,
        database=database
    )


def parse_database_url(url: str) -> dict:
    """
    Parse a postgres:// or postgresql:// URL into connection fields.

    Args:
        url: Connection URL

    Returns:
        Dict with host, port, username, password and database keys
        (values are None when the URL omits them)

    Raises:
        ConfigError: If the URL is not a valid PostgreSQL URL
    """
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as e:
        raise ConfigError(f"Failed to parse DATABASE_URL: {e}")

    if parsed.scheme not in URL_SCHEMES:
        raise ConfigError(
            f"Failed to parse DATABASE_URL: unsupported scheme {parsed.scheme!r} "
            f"(expected one of {', '.join(URL_SCHEMES)})"
        )
    if not parsed.netloc:
        raise ConfigError("Failed to parse DATABASE_URL: missing host")

    database = unquote(parsed.path.lstrip('/')) or None

    return {
        'host': parsed.hostname,
        'port': port,
        'username': unquote(parsed.username) if parsed.username else None,
        'password': unquote(parsed.password) if parsed.password else None,
        'database': database,
    }


def resolve_remote(environ: Mapping[str, str]) -> Optional[RemoteConfig]:
    """
    Resolve object storage settings.

    Returns:
        RemoteConfig, or None when B2_BUCKET is not set (remote storage disabled)
    """
    bucket = _get(environ, 'B2_BUCKET')
    if not bucket:
        return None

    return RemoteConfig(
        bucket=bucket,
        endpoint_url=_get(environ, 'AWS_ENDPOINT'),
        region=_get(environ, 'AWS_DEFAULT_REGION') or DEFAULT_REGION,
        access_key=_get(environ, 'AWS_ACCESS_KEY_ID'),
        secret_key=_get(environ, 'AWS_SECRET_ACCESS_KEY')
    )


def _get(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _get_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    value = _get(environ, name)
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number
