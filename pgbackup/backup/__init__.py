"""
Backup module for pgbackup.

This module handles the core backup functionality including:
- Dumping (full custom-format and data-only gzipped SQL)
- Restoring (pg_restore or psql, with transparent gunzip)
- Storage (S3-compatible bucket and local staging directory)
- Retention policy enforcement
- Execution orchestration
"""

from .artifacts import BackupArtifact, BackupMode
from .dump import DumpPipeline, DumpProcessError
from .executor import BackupExecutor, OperationResult
from .restore import RestorePipeline, RestoreProcessError
from .retention import RetentionManager
from .storage import (
    S3Storage,
    LocalStorage,
    StorageError,
    RemoteUploadError,
    RemoteDeleteError,
)

__all__ = [
    'BackupArtifact',
    'BackupMode',
    'BackupExecutor',
    'OperationResult',
    'DumpPipeline',
    'DumpProcessError',
    'RestorePipeline',
    'RestoreProcessError',
    'RetentionManager',
    'S3Storage',
    'LocalStorage',
    'StorageError',
    'RemoteUploadError',
    'RemoteDeleteError'
]
