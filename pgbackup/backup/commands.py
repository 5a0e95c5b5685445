"""
Helpers for invoking the PostgreSQL client tools.

The password is handed to child processes through PGPASSWORD only, so it
never shows up in the process list.
"""

import logging
import os
import shlex
import subprocess
from typing import List, Optional, Type

from pgbackup.config import DatabaseConfig


logger = logging.getLogger(__name__)

# Keep log lines and error messages readable
STDERR_LIMIT = 2000


class ToolError(Exception):
    """Raised when an external client tool fails."""

    def __init__(self, message: str, command: Optional[List[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


def connection_args(database: DatabaseConfig) -> List[str]:
    """Host, port and user arguments shared by pg_dump, pg_restore and psql."""
    return [
        '-h', database.host,
        '-p', str(database.port),
        '-U', database.username,
    ]


def tool_environment(database: DatabaseConfig) -> dict:
    """Child process environment with PGPASSWORD set."""
    env = os.environ.copy()
    if database.password:
        env['PGPASSWORD'] = database.password
    else:
        env.pop('PGPASSWORD', None)
    return env


def format_command(command: List[str]) -> str:
    return ' '.join(shlex.quote(part) for part in command)


def decode_stderr(data) -> str:
    if not data:
        return ''
    if isinstance(data, bytes):
        data = data.decode('utf-8', errors='replace')
    data = data.strip()
    if len(data) > STDERR_LIMIT:
        data = data[:STDERR_LIMIT] + '...'
    return data


def run_tool(command: List[str], database: DatabaseConfig, timeout: int,
             error_class: Type[ToolError] = ToolError) -> subprocess.CompletedProcess:
    """
    Run a client tool to completion.

    The process is killed if it runs longer than timeout seconds.

    Args:
        command: Argument vector (no shell)
        database: Connection settings, used for PGPASSWORD
        timeout: Seconds before the process is killed
        error_class: ToolError subclass to raise

    Returns:
        CompletedProcess with captured stdout/stderr

    Raises:
        error_class: If the tool is missing, times out or exits non-zero
    """
    tool = command[0]
    logger.debug(f"Running: {format_command(command)}")

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            env=tool_environment(database),
            timeout=timeout,
        )
    except FileNotFoundError:
        raise error_class(
            f"{tool} not found - install the PostgreSQL client tools",
            command=command
        )
    except subprocess.TimeoutExpired as e:
        raise error_class(
            f"{tool} timed out after {timeout}s",
            command=command,
            stderr=decode_stderr(e.stderr)
        )

    if result.returncode != 0:
        stderr = decode_stderr(result.stderr)
        raise error_class(
            f"{tool} exited with status {result.returncode}: {stderr or 'no diagnostic output'}",
            command=command,
            returncode=result.returncode,
            stderr=stderr
        )

    return result
