"""
Backup executor - orchestrates backup and restore operations.

Backup workflow:
1. Dump the database into the staging directory (full or data-only)
2. Upload the artifact to object storage and delete the local copy
3. Prune the bucket down to the newest N objects

Restore workflow:
1. Use the given artifact, or the newest one in the staging directory
2. Decompress if needed and restore with pg_restore or psql
3. (restore-and-dev) Start the dev command

Every operation returns an OperationResult instead of raising, so the
CLI can turn the outcome into an exit code.
"""

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from pgbackup.config import Settings
from .artifacts import BackupMode
from .dump import DumpPipeline, DumpProcessError
from .restore import RestorePipeline, RestoreProcessError
from .retention import RetentionManager
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of one backup, restore or dev-command run."""

    operation: str
    success: bool
    artifact_path: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0


def exit_code(results: Iterable[OperationResult]) -> int:
    """0 if every operation succeeded, 1 otherwise."""
    return 0 if all(result.success for result in results) else 1


class BackupExecutor:
    """
    Wires the dump, restore and retention components together for one run.
    """

    def __init__(self, settings: Settings,
                 local: Optional[LocalStorage] = None,
                 dump_pipeline: Optional[DumpPipeline] = None,
                 restore_pipeline: Optional[RestorePipeline] = None,
                 retention: Optional[RetentionManager] = None):
        """
        Initialize backup executor.

        Args:
            settings: Run configuration
            local: Staging directory handler
            dump_pipeline: Dump pipeline (default: built from settings)
            restore_pipeline: Restore pipeline (default: built from settings)
            retention: Retention manager (default: built from settings)
        """
        self.settings = settings
        self.local = local or LocalStorage(settings.backup_dir)
        self.dump_pipeline = dump_pipeline or DumpPipeline(settings)
        self.restore_pipeline = restore_pipeline or RestorePipeline(settings)
        self.retention = retention or RetentionManager.from_settings(settings, self.local)

    def backup(self, mode: BackupMode = BackupMode.FULL) -> OperationResult:
        """
        Dump the database, upload the artifact and apply retention.

        Args:
            mode: BackupMode.FULL or BackupMode.DATA_ONLY

        Returns:
            OperationResult; unsuccessful if the dump or the upload failed
        """
        operation = 'backup' if mode is BackupMode.FULL else 'backup-data'
        started = time.monotonic()

        try:
            artifact = self.dump_pipeline.dump(mode)
        except DumpProcessError as e:
            logger.error(f"Backup failed: {e}")
            return OperationResult(
                operation=operation,
                success=False,
                error=str(e),
                duration_seconds=time.monotonic() - started
            )

        uploaded = self.retention.upload_and_prune(artifact.local_path)

        result = OperationResult(
            operation=operation,
            success=uploaded,
            artifact_path=artifact.local_path,
            error=None if uploaded else f"Upload failed, backup kept at {artifact.local_path}",
            duration_seconds=time.monotonic() - started
        )
        if uploaded:
            logger.info(f"Backup completed in {result.duration_seconds:.1f}s")
        return result

    def resolve_artifact(self, path: Optional[str] = None) -> Optional[str]:
        """
        Pick the artifact to restore: the explicit path, else the newest staged one.
        """
        if path:
            return path
        try:
            return self.local.latest()
        except StorageError as e:
            logger.error(f"Could not scan staging directory: {e}")
            return None

    def restore(self, path: Optional[str] = None) -> OperationResult:
        """
        Restore the database from an artifact.

        Args:
            path: Artifact to restore (default: newest in the staging directory)

        Returns:
            OperationResult
        """
        started = time.monotonic()
        artifact_path = self.resolve_artifact(path)

        if not artifact_path:
            logger.error(f"No backup file found in {self.settings.backup_dir}")
            return OperationResult(
                operation='restore',
                success=False,
                error='No backup file found'
            )

        try:
            self.restore_pipeline.restore(artifact_path)
        except RestoreProcessError as e:
            logger.error(f"Restore failed: {e}")
            return OperationResult(
                operation='restore',
                success=False,
                artifact_path=artifact_path,
                error=str(e),
                duration_seconds=time.monotonic() - started
            )

        return OperationResult(
            operation='restore',
            success=True,
            artifact_path=artifact_path,
            duration_seconds=time.monotonic() - started
        )

    def restore_and_dev(self, path: Optional[str] = None) -> List[OperationResult]:
        """
        Restore, then start the dev command whether or not the restore worked.

        Args:
            path: Artifact to restore (default: newest in the staging directory)

        Returns:
            [restore result, dev command result]
        """
        restore_result = self.restore(path)
        if not restore_result.success:
            logger.warning("Restore failed, starting dev command anyway")

        return [restore_result, self.run_dev_command()]

    def run_dev_command(self) -> OperationResult:
        """
        Run the configured dev command in the foreground until it exits.

        Returns:
            OperationResult; unsuccessful if the command cannot start or exits non-zero
        """
        started = time.monotonic()
        logger.info(f"Starting dev server: {self.settings.dev_command}")

        try:
            completed = subprocess.run(shlex.split(self.settings.dev_command))
        except (ValueError, FileNotFoundError, PermissionError) as e:
            logger.error(f"Could not start dev command: {e}")
            return OperationResult(operation='dev', success=False, error=str(e))

        duration = time.monotonic() - started
        if completed.returncode != 0:
            logger.error(f"Dev command exited with status {completed.returncode}")
            return OperationResult(
                operation='dev',
                success=False,
                error=f"exited with status {completed.returncode}",
                duration_seconds=duration
            )

        return OperationResult(operation='dev', success=True, duration_seconds=duration)
