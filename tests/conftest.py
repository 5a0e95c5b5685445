"""
Shared pytest fixtures for pgbackup tests.

This module provides fixtures for:
- Settings pointing at a temporary staging directory
- Fake pg_dump / pg_restore / psql executables
- Mocked S3 (moto)
- A clean process environment for CLI tests
"""

import json
import stat
import sys
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from pgbackup.config import DatabaseConfig, RemoteConfig, Settings


# Behaviour of the fake tools is driven by sidecar files next to the script:
#   <tool>.calls     one JSON line per invocation (argv + PGPASSWORD)
#   <tool>.payload   bytes pg_dump emits (default: a tiny COPY block)
#   <tool>.input     copy of the file psql / pg_restore was asked to load
#   <tool>.exitcode  exit with this status after writing to stderr
#   <tool>.sleep     seconds to sleep before doing anything else
FAKE_TOOL_BODY = r'''
import json, os, sys, time

here = os.path.dirname(os.path.abspath(__file__))
name = os.path.basename(sys.argv[0])
args = sys.argv[1:]


def sidecar(suffix):
    return os.path.join(here, name + suffix)


with open(sidecar('.calls'), 'a') as log:
    log.write(json.dumps({'argv': args, 'pgpassword': os.environ.get('PGPASSWORD')}) + '\n')

if os.path.exists(sidecar('.sleep')):
    with open(sidecar('.sleep')) as f:
        time.sleep(float(f.read()))

if name == 'pg_dump':
    payload = b'COPY public.items (id, name) FROM stdin;\n1\talpha\n\\.\n'
    if os.path.exists(sidecar('.payload')):
        with open(sidecar('.payload'), 'rb') as f:
            payload = f.read()
    if '-f' in args:
        with open(args[args.index('-f') + 1], 'wb') as out:
            out.write(payload)
    else:
        sys.stdout.buffer.write(payload)
        sys.stdout.flush()
else:
    source = args[args.index('-f') + 1] if '-f' in args else args[-1]
    with open(source, 'rb') as src, open(sidecar('.input'), 'wb') as dst:
        dst.write(src.read())

if os.path.exists(sidecar('.exitcode')):
    sys.stderr.write(name + ': error: simulated failure\n')
    with open(sidecar('.exitcode')) as f:
        sys.exit(int(f.read()))
'''


class FakeTools:
    """Handle on a directory of fake PostgreSQL client executables."""

    NAMES = ('pg_dump', 'pg_restore', 'psql')

    def __init__(self, bin_dir: Path):
        self.bin_dir = bin_dir
        bin_dir.mkdir(parents=True, exist_ok=True)
        for name in self.NAMES:
            script = bin_dir / name
            script.write_text(f"#!{sys.executable}\n{FAKE_TOOL_BODY}")
            script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def path(self, name: str) -> str:
        return str(self.bin_dir / name)

    def calls(self, name: str) -> list:
        log = self.bin_dir / f"{name}.calls"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines() if line]

    def fail(self, name: str, exit_code: int = 1):
        (self.bin_dir / f"{name}.exitcode").write_text(str(exit_code))

    def sleep(self, name: str, seconds: float):
        (self.bin_dir / f"{name}.sleep").write_text(str(seconds))

    def set_payload(self, data: bytes):
        (self.bin_dir / 'pg_dump.payload').write_bytes(data)

    def received(self, name: str) -> bytes:
        return (self.bin_dir / f"{name}.input").read_bytes()


@pytest.fixture
def fake_tools(tmp_path):
    """Fake pg_dump, pg_restore and psql in tmp_path/bin."""
    return FakeTools(tmp_path / 'bin')


@pytest.fixture
def database_config():
    return DatabaseConfig(
        host='db.example.com',
        port=5433,
        username='backup_user',
        password='s3cr3t-pass',
        database='shop'
    )


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def settings(database_config, backup_dir, fake_tools):
    """
    Settings with remote storage disabled and the fake client tools.
    """
    return Settings(
        database=database_config,
        backup_dir=str(backup_dir),
        dump_timeout=30,
        restore_timeout=30,
        pg_dump_bin=fake_tools.path('pg_dump'),
        pg_restore_bin=fake_tools.path('pg_restore'),
        psql_bin=fake_tools.path('psql'),
        dev_command=f"{sys.executable} -c 'import sys; sys.exit(0)'"
    )


@pytest.fixture
def remote_config():
    return RemoteConfig(
        bucket='test-bucket',
        region='us-east-1',
        access_key='testing',
        secret_key='testing'
    )


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


ENV_KEYS = (
    'APP_ENV', 'DATABASE_URL', 'DB_HOST', 'DB_PORT', 'DB_USERNAME', 'DB_PASSWORD',
    'DB_NAME', 'BACKUP_DIR', 'B2_BUCKET', 'AWS_ENDPOINT', 'AWS_DEFAULT_REGION',
    'BACKUP_KEEP_LAST', 'BACKUP_DUMP_TIMEOUT', 'BACKUP_RESTORE_TIMEOUT',
    'PG_DUMP_BIN', 'PG_RESTORE_BIN', 'PSQL_BIN', 'DEV_COMMAND', 'BACKUP_CRON',
    'LOG_LEVEL', 'LOG_DIR',
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable pgbackup reads and mark the run as production."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv('APP_ENV', 'production')
    return monkeypatch
