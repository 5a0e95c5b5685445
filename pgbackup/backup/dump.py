"""
Dump pipeline - produces a local backup artifact with pg_dump.

Modes:
- full: custom-format dump (-Fc) written by pg_dump itself via -f
- data-only: plain SQL streamed from pg_dump's stdout through gzip into the file
"""

import logging
import os
import subprocess
import tempfile
import threading
from datetime import datetime
from typing import List, Optional

from pgbackup.config import Settings
from .artifacts import BackupArtifact, BackupMode
from .commands import (
    ToolError,
    connection_args,
    decode_stderr,
    format_command,
    run_tool,
    tool_environment,
)
from .compression import compress_stream, CompressionError


logger = logging.getLogger(__name__)


class DumpProcessError(ToolError):
    """Raised when pg_dump fails or its output stream cannot be written."""
    pass


class DumpPipeline:
    """
    Runs pg_dump for the configured database into the staging directory.
    """

    def __init__(self, settings: Settings):
        """
        Initialize dump pipeline.

        Args:
            settings: Run configuration (database, staging dir, tool paths, timeout)
        """
        self.settings = settings
        self.database = settings.database

    def build_command(self, mode: BackupMode, output_path: Optional[str] = None) -> List[str]:
        """
        Build the pg_dump argument vector for a mode.

        Args:
            mode: Dump mode
            output_path: Destination file (full mode only; data-only writes to stdout)

        Returns:
            Argument list
        """
        command = [self.settings.pg_dump_bin] + connection_args(self.database)

        if mode is BackupMode.DATA_ONLY:
            command += ['--data-only', '--no-owner', '--no-acl']
        else:
            command += ['--no-owner', '--no-acl', '--clean', '--if-exists', '-Fc']
            if output_path:
                command += ['-f', output_path]

        command.append(self.database.database)
        return command

    def dump(self, mode: BackupMode, now: Optional[datetime] = None) -> BackupArtifact:
        """
        Dump the database to a new artifact in the staging directory.

        A failed dump removes whatever partial file it left behind.

        Args:
            mode: BackupMode.FULL or BackupMode.DATA_ONLY
            now: Timestamp for the artifact name (default: now, UTC)

        Returns:
            BackupArtifact describing the written file

        Raises:
            DumpProcessError: If pg_dump fails, times out or the output cannot be written
        """
        artifact = BackupArtifact.create(self.settings.backup_dir, self.database.database, mode, now)
        logger.info(f"Creating {mode.value} backup of {self.database.database}@{self.database.host}")

        try:
            if mode is BackupMode.DATA_ONLY:
                self._dump_streamed(artifact)
            else:
                self._dump_direct(artifact)
        except DumpProcessError:
            self._discard(artifact.local_path)
            raise

        size = os.path.getsize(artifact.local_path)
        logger.info(f"Backup saved: {artifact.local_path} ({size / 1024 / 1024:.2f} MB)")
        return artifact

    def _dump_direct(self, artifact: BackupArtifact):
        """pg_dump writes the custom-format file itself."""
        command = self.build_command(BackupMode.FULL, artifact.local_path)
        run_tool(command, self.database, self.settings.dump_timeout, error_class=DumpProcessError)

        if not os.path.exists(artifact.local_path):
            raise DumpProcessError(
                f"pg_dump reported success but {artifact.local_path} was not created",
                command=command
            )

    def _dump_streamed(self, artifact: BackupArtifact):
        """
        Pipe pg_dump stdout through gzip into the artifact file.

        stderr goes to a temporary file so the tool can never block on a
        full stderr pipe while we are reading stdout. A watchdog timer kills
        the process once the dump timeout has passed.
        """
        command = self.build_command(BackupMode.DATA_ONLY)
        timeout = self.settings.dump_timeout
        logger.debug(f"Running: {format_command(command)}")

        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    command,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    env=tool_environment(self.database),
                )
            except FileNotFoundError:
                raise DumpProcessError(
                    f"{command[0]} not found - install the PostgreSQL client tools",
                    command=command
                )

            timed_out = threading.Event()

            def _expire():
                timed_out.set()
                process.kill()

            watchdog = threading.Timer(timeout, _expire)
            watchdog.daemon = True
            watchdog.start()

            stream_error = None
            try:
                try:
                    raw_size = compress_stream(process.stdout, artifact.local_path)
                except CompressionError as e:
                    stream_error = e
                    raw_size = 0
                finally:
                    process.stdout.close()
                    returncode = process.wait()
            finally:
                watchdog.cancel()

            stderr_file.seek(0)
            stderr = decode_stderr(stderr_file.read())

        if timed_out.is_set():
            raise DumpProcessError(
                f"{command[0]} timed out after {timeout}s",
                command=command,
                returncode=returncode,
                stderr=stderr
            )
        if stream_error is not None:
            raise DumpProcessError(
                f"Writing {artifact.local_path} failed: {stream_error}",
                command=command,
                returncode=returncode,
                stderr=stderr
            )
        if returncode != 0:
            raise DumpProcessError(
                f"{command[0]} exited with status {returncode}: {stderr or 'no diagnostic output'}",
                command=command,
                returncode=returncode,
                stderr=stderr
            )

        logger.debug(f"Streamed {raw_size:,} bytes of SQL through gzip")

    def _discard(self, path: str):
        if os.path.exists(path):
            try:
                os.remove(path)
                logger.info(f"Removed incomplete artifact: {path}")
            except OSError as e:
                logger.warning(f"Failed to remove incomplete artifact {path}: {e}")
