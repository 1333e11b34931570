"""Command-line interface for chunk backup."""

import logging
import os
import sys
import click
from typing import Optional

from .config.config_manager import ConfigManager
from .core.context import RunContext
from .core.models import BackupMode, BackupResult
from .core.orchestrator import BackupOrchestrator
from .exceptions import BackupCancelled
from .storage import LocalStorage, RcloneStorage, Storage
from .utils.formatters import format_date, format_duration, format_file_size, split_args


EXIT_VERIFY_FAILED = 4
EXIT_CANCELLED = 3


def setup_logging(level: str, log_file: Optional[str] = None):
    """Set up logging configuration."""
    # Convert string level to logging constant
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except Exception as e:
            click.echo(f"Warning: Could not set up file logging: {e}", err=True)


def _load_settings(ctx) -> ConfigManager:
    """Load the config file, merge command line flags and set up logging."""
    options = ctx.obj
    manager = ConfigManager(options.get('config_path'))
    manager.load_config()

    manager.apply_overrides('backup', {
        'chunk_path': options.get('chunk_path'),
        'remote_path': options.get('remote_path'),
        'temp_path': options.get('temp_path'),
        'workers': options.get('workers'),
        'timeout_minutes': options.get('timeout'),
    })
    manager.apply_overrides('storage', {'type': options.get('storage')})
    manager.apply_overrides('rclone', {
        'binary': options.get('rclone_binary'),
        'config': options.get('rclone_config'),
        'args': split_args(options.get('rclone_args') or ()) or None,
        'verbose': True if options.get('verbose') else None,
    })

    logging_config = manager.get_logging_config()
    level = options.get('log_level') or ('DEBUG' if options.get('verbose') else logging_config['level'])
    setup_logging(level, options.get('log_file') or logging_config.get('file'))

    backup_config = manager.get_backup_config()
    for key in ('chunk_path', 'remote_path'):
        if not backup_config.get(key):
            raise click.UsageError(f"--{key.replace('_', '-')} is required (or set backup.{key} in the config file)")

    return manager


def _build_storage(manager: ConfigManager) -> Storage:
    storage_type = manager.get_storage_config().get('type', 'rclone')
    if storage_type == 'local':
        return LocalStorage(os.path.expanduser(manager.get_backup_config()['remote_path']))

    rclone_config = manager.get_rclone_config()
    return RcloneStorage(
        binary=rclone_config['binary'],
        config_file=os.path.expanduser(rclone_config['config']) if rclone_config.get('config') else None,
        extra_args=rclone_config.get('args', []),
        verbose=rclone_config.get('verbose', False),
    )


def _build_orchestrator(manager: ConfigManager, storage: Storage) -> BackupOrchestrator:
    backup_config = manager.get_backup_config()
    # Local storage resolves paths below its own root
    remote_path = '' if isinstance(storage, LocalStorage) else backup_config['remote_path']
    return BackupOrchestrator(
        storage=storage,
        chunk_path=os.path.expanduser(backup_config['chunk_path']),
        remote_path=remote_path,
        temp_path=os.path.expanduser(backup_config['temp_path']),
        prefix_digits=backup_config['prefix_digits'],
        workers=backup_config['workers'],
    )


def _run_context(manager: ConfigManager) -> RunContext:
    return RunContext(timeout=manager.get_backup_config()['timeout_minutes'] * 60)


def _print_result(result: BackupResult, verbose: bool):
    click.echo("\n=== Backup finished ===")
    click.echo(f"Mode: {result.mode.value}")
    click.echo(f"Duration: {format_duration(result.duration_seconds)}")
    click.echo(f"Total archives: {result.total_archives}")
    click.echo(f"Updated archives: {result.updated_archives}")
    click.echo(f"Skipped archives: {result.skipped_archives}")
    click.echo(f"Failed archives: {len(result.errors)}")
    click.echo(f"Uploaded files: {len(result.uploaded_files)}")

    if result.errors:
        click.echo("\nErrors:")
        for archive_id in result.error_archives:
            click.echo(f"  - {archive_id}: {result.errors[archive_id]}")

    if verbose and result.details:
        click.echo("\nDetails:")
        for archive_id, detail in sorted(result.details.items()):
            click.echo(f"  {archive_id}: {detail}")

    if result.uploaded_files:
        click.echo("\nUploaded:")
        for name in result.uploaded_files:
            click.echo(f"  - {name}")

    if result.succeeded:
        click.echo("\nBackup completed successfully")
    else:
        click.echo(f"\nBackup completed with {len(result.errors)} failed archives", err=True)


def _run_backup(ctx, mode: BackupMode, prefix_digits: Optional[int] = None, force: bool = False):
    try:
        manager = _load_settings(ctx)
        if prefix_digits is not None:
            manager.apply_overrides('backup', {'prefix_digits': prefix_digits})

        backup_config = manager.get_backup_config()
        orchestrator = _build_orchestrator(manager, _build_storage(manager))

        click.echo(f"Starting {mode.value} backup...")
        click.echo(f"Chunk path: {backup_config['chunk_path']}")
        click.echo(f"Remote path: {backup_config['remote_path']}")
        click.echo(f"Temp path: {backup_config['temp_path']}")
        if mode == BackupMode.FULL:
            click.echo(f"Prefix digits: {backup_config['prefix_digits']}")

        result = orchestrator.run(mode, _run_context(manager), force=force)
    except click.UsageError:
        raise
    except (BackupCancelled, KeyboardInterrupt) as e:
        click.echo(f"Backup cancelled: {e}", err=True)
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        click.echo(f"Error during {mode.value} backup: {e}", err=True)
        sys.exit(1)

    # failed archives are reported but do not fail the process
    _print_result(result, bool(ctx.obj.get('verbose')))


@click.group()
@click.option('--config', '-c', 'config_path',
              help='Path to configuration file')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.option('--log-file',
              help='Log file path')
@click.option('--chunk-path', help='Path to the chunk directory')
@click.option('--remote-path', help='Remote storage path, e.g. remote:backup')
@click.option('--temp-path', help='Scratch directory for archives')
@click.option('--storage', type=click.Choice(['rclone', 'local']), default=None,
              help='Storage backend')
@click.option('--rclone-binary', help='Path to the rclone executable')
@click.option('--rclone-config', help='Path to the rclone config file')
@click.option('--rclone-args', multiple=True,
              help='Extra rclone arguments, comma separated')
@click.option('--timeout', type=float, default=None,
              help='Run timeout in minutes')
@click.option('--workers', type=click.IntRange(min=1), default=None,
              help='Archive groups processed in parallel')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: Optional[str], log_file: Optional[str], **options):
    """Chunk Backup - incremental backups of a hex-sharded chunk directory."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['log_level'] = log_level
    ctx.obj['log_file'] = log_file
    ctx.obj.update(options)


@cli.command()
@click.option('--prefix-digits', type=int, default=None,
              help='Hex digits per archive group (1-4)')
@click.option('--force', is_flag=True,
              help='Upload every archive even if its checksum is unchanged')
@click.pass_context
def full(ctx, prefix_digits: Optional[int], force: bool):
    """Back up every chunk directory."""
    _run_backup(ctx, BackupMode.FULL, prefix_digits=prefix_digits, force=force)


@cli.command()
@click.pass_context
def incremental(ctx):
    """Back up the chunk directories changed since the last run."""
    _run_backup(ctx, BackupMode.INCREMENTAL)


@cli.command()
@click.pass_context
def verify(ctx):
    """Download archives and check them against recorded checksums."""
    try:
        manager = _load_settings(ctx)
        orchestrator = _build_orchestrator(manager, _build_storage(manager))
        click.echo("Verifying remote archives...")
        results = orchestrator.verify(_run_context(manager))
    except click.UsageError:
        raise
    except Exception as e:
        click.echo(f"Error during verify: {e}", err=True)
        sys.exit(1)

    failures = 0
    for archive_id, status in results.items():
        marker = "✅" if status == "ok" else "❌"
        if status != "ok":
            failures += 1
        click.echo(f"  {marker} {archive_id}: {status}")

    click.echo(f"\n{len(results) - failures} of {len(results)} archives verified")
    if failures:
        sys.exit(EXIT_VERIFY_FAILED)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the last backup and the archives present remotely."""
    try:
        manager = _load_settings(ctx)
        orchestrator = _build_orchestrator(manager, _build_storage(manager))
        summary = orchestrator.status(_run_context(manager))
    except click.UsageError:
        raise
    except Exception as e:
        click.echo(f"Error getting status: {e}", err=True)
        sys.exit(1)

    click.echo(f"📦 Last backup: {format_date(summary['captured_at'])}")
    click.echo(f"   Prefix digits: {summary['prefix_digits']}")
    click.echo(f"   Shards: {summary['shards']} ({format_file_size(summary['total_size'])})")
    click.echo(f"   Archives: {len(summary['archives'])}")

    for archive in summary['archives']:
        if archive['present']:
            click.echo(f"     {archive['archive_id']}  {format_file_size(archive['size'])}  "
                       f"{archive['checksum'][:12]}")
        else:
            click.echo(f"     {archive['archive_id']}  ⚠️  missing from remote")


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate configuration file."""
    try:
        config_manager = ConfigManager(ctx.obj.get('config_path'))
        config_manager.load_config()

        click.echo("✅ Configuration loaded successfully")

        backup_config = config_manager.get_backup_config()
        rclone_config = config_manager.get_rclone_config()

        click.echo("\n📊 Configuration Summary:")
        click.echo(f"   Chunk path: {backup_config.get('chunk_path') or 'not set'}")
        click.echo(f"   Remote path: {backup_config.get('remote_path') or 'not set'}")
        click.echo(f"   Temp path: {backup_config['temp_path']}")
        click.echo(f"   Prefix digits: {backup_config['prefix_digits']}")
        click.echo(f"   Workers: {backup_config['workers']}")
        click.echo(f"   Storage: {config_manager.get_storage_config()['type']}")
        click.echo(f"   rclone: {rclone_config['binary']} {' '.join(rclone_config.get('args', []))}".rstrip())

    except Exception as e:
        click.echo(f"❌ Configuration validation failed: {e}", err=True)
        sys.exit(1)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
