"""
Backup artifact naming.

Format: {database}-{full|data-only}-{timestamp}.{dump|sql.gz}

The timestamp is UTC ISO-8601 with milliseconds, with ':' and '.'
replaced by '-' so it is safe in file names and object keys.
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# Files recognised as backups when scanning the staging directory
ARTIFACT_PATTERN = re.compile(r'\.(sql|dump)(\.gz)?$')

COMPRESSION_SUFFIX = '.gz'
CUSTOM_FORMAT_EXTENSION = '.dump'


class BackupMode(Enum):
    """Dump strategy."""

    FULL = 'full'
    DATA_ONLY = 'data-only'

    @property
    def extension(self) -> str:
        # Custom format is already compressed by pg_dump
        if self is BackupMode.FULL:
            return 'dump'
        return 'sql.gz'


@dataclass(frozen=True)
class BackupArtifact:
    """A backup file produced by one dump invocation."""

    database: str
    mode: BackupMode
    timestamp: str
    local_path: str

    @property
    def filename(self) -> str:
        return os.path.basename(self.local_path)

    @property
    def extension(self) -> str:
        return self.mode.extension

    @property
    def remote_key(self) -> str:
        return self.filename

    @classmethod
    def create(cls, backup_dir: str, database: str, mode: BackupMode,
               now: Optional[datetime] = None) -> 'BackupArtifact':
        """
        Create a new artifact descriptor with a fixed timestamp.

        Args:
            backup_dir: Staging directory
            database: Database name (logical name of the backup)
            mode: Dump mode
            now: Time to stamp the artifact with (default: current UTC time)

        Returns:
            BackupArtifact (the file itself is not created)
        """
        timestamp = format_timestamp(now or datetime.now(timezone.utc))
        filename = generate_artifact_filename(database, mode, timestamp)
        return cls(
            database=database,
            mode=mode,
            timestamp=timestamp,
            local_path=os.path.join(backup_dir, filename)
        )


def format_timestamp(moment: datetime) -> str:
    """
    Format a datetime as a file-name-safe ISO-8601 UTC timestamp.

    2024-01-15 12:00:00 UTC -> 2024-01-15T12-00-00-000Z
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime('%Y-%m-%dT%H:%M:%S') + f".{moment.microsecond // 1000:03d}Z"
    return iso.replace(':', '-').replace('.', '-')


def generate_artifact_filename(database: str, mode: BackupMode, timestamp: str) -> str:
    return f"{database}-{mode.value}-{timestamp}.{mode.extension}"


def is_artifact_name(filename: str) -> bool:
    return ARTIFACT_PATTERN.search(filename) is not None


def is_compressed(path: str) -> bool:
    return path.endswith(COMPRESSION_SUFFIX)


def is_custom_format(path: str) -> bool:
    return path.endswith(CUSTOM_FORMAT_EXTENSION)


def strip_compression_suffix(path: str) -> str:
    """
    Strip a trailing .gz from a path.

    Args:
        path: Artifact path

    Returns:
        Path without the compression suffix (unchanged if there is none)
    """
    if is_compressed(path):
        return path[:-len(COMPRESSION_SUFFIX)]
    return path
