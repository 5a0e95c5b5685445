"""
Restore pipeline - loads a backup artifact into the target database.

Workflow:
1. Decompress .gz artifacts to a sibling file
2. Pick pg_restore (custom format .dump) or psql (plain SQL)
3. Remove the decompressed intermediate, whatever the outcome
"""

import logging
import os
from typing import List

from pgbackup.config import Settings
from .artifacts import is_compressed, is_custom_format, strip_compression_suffix
from .commands import ToolError, connection_args, run_tool
from .compression import decompress_file, CompressionError


logger = logging.getLogger(__name__)


class RestoreProcessError(ToolError):
    """Raised when an artifact cannot be restored."""
    pass


class RestorePipeline:
    """
    Restores artifacts produced by DumpPipeline.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.database = settings.database

    def build_command(self, artifact_path: str) -> List[str]:
        """
        Build the restore argument vector for an uncompressed artifact.

        Args:
            artifact_path: Path to a .dump or plain SQL file

        Returns:
            Argument list for pg_restore or psql
        """
        if is_custom_format(artifact_path):
            return (
                [self.settings.pg_restore_bin]
                + connection_args(self.database)
                + ['--no-owner', '--no-acl', '--clean', '--if-exists',
                   '-d', self.database.database, artifact_path]
            )

        return (
            [self.settings.psql_bin]
            + connection_args(self.database)
            + ['-d', self.database.database, '-f', artifact_path]
        )

    def restore(self, artifact_path: str):
        """
        Restore the database from an artifact.

        Args:
            artifact_path: Path to a .dump, .sql or .sql.gz artifact

        Raises:
            RestoreProcessError: If the artifact is missing, cannot be
                decompressed, or the restore tool fails
        """
        if not os.path.isfile(artifact_path):
            raise RestoreProcessError(f"Backup file not found: {artifact_path}")

        logger.info(f"Restoring {self.database.database}@{self.database.host} from {artifact_path}")

        restore_path = artifact_path
        if is_compressed(artifact_path):
            restore_path = strip_compression_suffix(artifact_path)
            logger.info(f"Decompressing to {restore_path}")
            try:
                decompress_file(artifact_path, restore_path)
            except CompressionError as e:
                raise RestoreProcessError(str(e))

        try:
            command = self.build_command(restore_path)
            run_tool(command, self.database, self.settings.restore_timeout, error_class=RestoreProcessError)
            logger.info("Restore complete")
        finally:
            if restore_path != artifact_path:
                self._remove_intermediate(restore_path)

    def _remove_intermediate(self, path: str):
        try:
            os.remove(path)
            logger.debug(f"Removed decompressed file: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove decompressed file {path}: {e}")
