"""
Command line entry point.

Commands:
    pgbackup backup                  # Full backup (schema+data)
    pgbackup backup-data             # Data-only backup
    pgbackup restore [file]          # Restore backup
    pgbackup restore-and-dev [file]  # Restore then start dev
    pgbackup list                    # Show local and remote backups
    pgbackup schedule                # Run backups on BACKUP_CRON

Exit status: 0 on success, 1 if an operation failed, 2 on configuration errors.
"""

import logging
import os

import click

from pgbackup import configure_logging
from pgbackup.config import ConfigError, Settings, load_environment_files
from pgbackup.backup.artifacts import BackupMode
from pgbackup.backup.executor import BackupExecutor, exit_code
from pgbackup.backup.storage import StorageError


logger = logging.getLogger('pgbackup')

EXIT_CONFIG_ERROR = 2


class UsageGroup(click.Group):
    """Group that prints usage and exits cleanly on unknown commands."""

    def resolve_command(self, ctx, args):
        if args and self.get_command(ctx, args[0]) is None:
            click.echo(ctx.get_help())
            ctx.exit(0)
        return super().resolve_command(ctx, args)


def _startup() -> BackupExecutor:
    """
    Load configuration, build the storage clients and prepare the staging directory.

    Exits with status 2 if any step fails.
    """
    configure_logging()
    load_environment_files(os.environ)

    try:
        settings = Settings.from_env(os.environ)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise SystemExit(EXIT_CONFIG_ERROR)

    configure_logging(settings.log_level, settings.log_dir)

    try:
        executor = BackupExecutor(settings)
        executor.local.ensure_directory()
    except StorageError as e:
        logger.error(f"Configuration error: {e}")
        raise SystemExit(EXIT_CONFIG_ERROR)

    return executor


@click.group(cls=UsageGroup, invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """PostgreSQL backups to S3-compatible storage."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)
    ctx.obj = _startup()


@cli.command()
@click.pass_obj
def backup(executor: BackupExecutor):
    """Full backup (schema+data)."""
    result = executor.backup(BackupMode.FULL)
    raise SystemExit(exit_code([result]))


@cli.command('backup-data')
@click.pass_obj
def backup_data(executor: BackupExecutor):
    """Data-only backup."""
    result = executor.backup(BackupMode.DATA_ONLY)
    raise SystemExit(exit_code([result]))


@cli.command()
@click.argument('file', required=False)
@click.pass_obj
def restore(executor: BackupExecutor, file):
    """Restore backup (default: newest local backup)."""
    result = executor.restore(file)
    raise SystemExit(exit_code([result]))


@cli.command('restore-and-dev')
@click.argument('file', required=False)
@click.pass_obj
def restore_and_dev(executor: BackupExecutor, file):
    """Restore then start dev."""
    results = executor.restore_and_dev(file)
    raise SystemExit(exit_code(results))


@cli.command('list')
@click.pass_obj
def list_backups(executor: BackupExecutor):
    """List local and remote backups."""
    click.echo(f"Local backups in {executor.settings.backup_dir}:")
    try:
        staged = list(executor.local.list_artifacts())
    except StorageError as e:
        logger.error(f"Failed to list local backups: {e}")
        raise SystemExit(1)

    if not staged:
        click.echo("  (none)")
    for artifact in staged:
        click.echo(
            f"  - {artifact.name} ({artifact.size / 1024 / 1024:.2f} MB, "
            f"{artifact.modified:%Y-%m-%d %H:%M:%S})"
        )

    if not executor.retention.enabled:
        click.echo("Remote storage not configured")
        return

    click.echo(f"Remote backups in {executor.settings.remote.bucket}:")
    try:
        remote = executor.retention.list_remote()
    except StorageError as e:
        logger.error(f"Failed to list remote backups: {e}")
        raise SystemExit(1)

    if not remote:
        click.echo("  (none)")
    for obj in remote:
        click.echo(
            f"  - {obj.key} ({obj.size / 1024 / 1024:.2f} MB, "
            f"{obj.last_modified:%Y-%m-%d %H:%M:%S %Z})"
        )


@cli.command()
@click.option('--data-only', is_flag=True, help='Run data-only backups instead of full ones.')
@click.pass_obj
def schedule(executor: BackupExecutor, data_only):
    """Run backups on the BACKUP_CRON schedule (UTC)."""
    from pgbackup.scheduler import run_scheduler

    mode = BackupMode.DATA_ONLY if data_only else BackupMode.FULL
    try:
        run_scheduler(executor, executor.settings.backup_cron, mode)
    except ValueError as e:
        logger.error(f"Invalid BACKUP_CRON {executor.settings.backup_cron!r}: {e}")
        raise SystemExit(EXIT_CONFIG_ERROR)


def main():
    cli(prog_name='pgbackup')


if __name__ == '__main__':
    main()
