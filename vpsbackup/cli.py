"""Main CLI entry point for the vps-backup tool.

This module provides the command-line interface for vps-backup: running the
daily backup, verifying and reporting on recent backups, restoring a backup
set, and registering the backup in the crontab.

The CLI is built using Click. Besides the ``vps-backup`` command group, the
runner, verifier, restorer and status report are exposed as standalone
console scripts that forward to the matching subcommand.
"""

import sys
from typing import Any, Dict, Optional

import click
import yaml

from vpsbackup import __version__
from vpsbackup.utils.errors import (
    ConfigurationError,
    ErrorHandler,
    create_error_suggestions,
    format_validation_errors,
)
from vpsbackup.utils.files import human_size
from vpsbackup.utils.logging import setup_logging

BANNER = "======================================"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--dry-run", is_flag=True, help="Show what would be done without executing")
@click.option("--log-file", help="Log to file in addition to console")
@click.option(
    "--config",
    "config_path",
    envvar="VPS_BACKUP_CONFIG",
    help="Configuration file (default: /etc/vps-backup/config.yml)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    dry_run: bool,
    log_file: Optional[str],
    config_path: Optional[str],
) -> None:
    """vps-backup - Database and file backups for a VPS.

    Backs up PostgreSQL, MySQL and Redis with their native dump tools,
    archives application directories and system configuration, and keeps
    daily, weekly and monthly copies under a single backup root.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["dry_run"] = dry_run
    ctx.obj["log_file"] = log_file
    ctx.obj["config_path"] = config_path
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)

    setup_logging(verbose=verbose, log_file=log_file)


def _load_config(ctx: click.Context) -> Dict[str, Any]:
    """Load the effective configuration or exit with a formatted error."""
    from vpsbackup.config import ConfigManager, ConfigValidationError

    try:
        return ConfigManager(ctx.obj.get("config_path")).load_config()
    except ConfigValidationError as e:
        error = ConfigurationError(
            "Invalid configuration",
            details=format_validation_errors(e.errors),
            suggestions=create_error_suggestions("configuration_invalid"),
        )
        ctx.obj["error_handler"].exit_with_error(error)
    except FileNotFoundError as e:
        ctx.obj["error_handler"].exit_with_error(e, context="Loading configuration")


def _storage(config: Dict[str, Any], verbose: bool = False):
    from vpsbackup.backup import BackupStorage

    groups = sorted({source["group"] for source in config.get("files", [])})
    return BackupStorage(config["backup_root"], file_groups=groups or None, verbose=verbose)


def _confirm(prompt: str) -> bool:
    answer = click.prompt(f"{prompt} (yes/no)", default="", show_default=False)
    return answer.strip() == "yes"


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the backup directory structure."""
    config = _load_config(ctx)

    if ctx.obj["dry_run"]:
        click.echo(f"DRY RUN: Would create backup directories under {config['backup_root']}")
        return

    try:
        created = _storage(config, ctx.obj["verbose"]).initialize()
        click.echo(f"✓ Backup root ready: {config['backup_root']}")
        for path in created:
            click.echo(f"  + {path}")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, context="Creating backup directories")


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run a complete backup now.

    Dumps every running database engine, archives files and system
    configuration, writes the run manifest, applies retention and creates
    the weekly (Sunday) and monthly (1st) archives.
    """
    config = _load_config(ctx)

    if ctx.obj["dry_run"]:
        click.echo(f"DRY RUN: Would back up into {config['backup_root']}")
        for category, settings in config.get("databases", {}).items():
            state = "enabled" if settings.get("enabled", True) else "disabled"
            click.echo(f"DRY RUN: {category} ({state}, service {settings['service']})")
        for source in config.get("files", []):
            click.echo(f"DRY RUN: archive {source['path']} -> files/{source['group']}/{source['name']}")
        click.echo(f"DRY RUN: archive {len(config.get('configs', {}).get('paths', []))} config path(s)")
        return

    try:
        from vpsbackup.backup import BackupManager

        manager = BackupManager(config, verbose=ctx.obj["verbose"])
        result = manager.run_backup()

        click.echo(f"✓ Backup {result['timestamp']} completed")
        click.echo(f"  Artifacts: {len(result['artifacts'])}")
        if result["skipped"]:
            click.echo(f"  Skipped (not running): {', '.join(result['skipped'])}")
        if result["warnings"]:
            click.echo(f"  Warnings: {len(result['warnings'])}")
        click.echo(f"  Manifest: {result['manifest']['txt']}")
        click.echo(f"  Log: {result['log_file']}")
        click.echo(f"  Total size: {result['total_size']}")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, context="Running backup")


@cli.command()
@click.option("--check", is_flag=True, help="Verify checksums and gzip streams of a run")
@click.argument("timestamp", required=False)
@click.pass_context
def verify(ctx: click.Context, check: bool, timestamp: Optional[str]) -> None:
    """Show recent backups, disk usage and the last backup log.

    With --check, re-hash every artifact recorded in the manifest of
    TIMESTAMP (default: the latest run) and exit non-zero on any mismatch.
    """
    config = _load_config(ctx)

    from vpsbackup.backup import BackupVerifier

    verifier = BackupVerifier(_storage(config), config, verbose=ctx.obj["verbose"])

    if check:
        _print_integrity(verifier.check_integrity(timestamp))
        return

    report = verifier.report()

    click.echo(BANNER)
    click.echo("VPS Backup Verification")
    click.echo(BANNER)
    click.echo("")
    click.echo(f"Timezone: {report['timezone']}")
    click.echo(f"Current time: {report['now']:%a %b %d %H:%M:%S %Y}")
    click.echo("")
    click.echo("=== Recent Backups ===")
    click.echo("")

    from vpsbackup.backup.storage import CATEGORY_LABELS

    for category, artifacts in report["recent"].items():
        label = CATEGORY_LABELS[category]
        click.echo(f"{label} backups (last {config['verify']['recent_count']}):")
        if not artifacts:
            click.echo(f"No {label} backups found")
        for artifact in artifacts:
            click.echo(f"  {human_size(artifact['size']):>6}  {artifact['modified']:%Y-%m-%d %H:%M}  {artifact['path']}")
        click.echo("")

    click.echo("=== Disk Usage ===")
    for entry in report["usage"]:
        click.echo(f"{entry['size_human']}\t{entry['path']}")
    click.echo("")

    click.echo("=== Last Backup Log ===")
    if report["last_log"]:
        click.echo(f"Log file: {report['last_log']}")
        click.echo("")
        for line in report["log_tail"]:
            click.echo(line)
    else:
        click.echo("No log files found")


def _print_integrity(result: Dict[str, Any]) -> None:
    if result["error"]:
        click.echo(f"✗ {result['error']}", err=True)
        sys.exit(1)

    click.echo(f"Integrity check for backup {result['timestamp']}:")
    for entry in result["results"]:
        symbol = "✓" if entry["status"] == "ok" else "✗"
        line = f"  {symbol} {entry['status']:<17} {entry['path']}"
        if entry["detail"]:
            line += f" ({entry['detail']})"
        click.echo(line)

    if not result["ok"]:
        failed = sum(1 for entry in result["results"] if entry["status"] != "ok")
        click.echo(f"✗ {failed} artifact(s) failed verification", err=True)
        sys.exit(1)

    click.echo(f"✓ All {len(result['results'])} artifact(s) verified")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show whether today's backup ran and the current schedule."""
    config = _load_config(ctx)

    from vpsbackup.backup import BackupScheduler, BackupVerifier

    verifier = BackupVerifier(
        _storage(config),
        config,
        scheduler=BackupScheduler(verbose=ctx.obj["verbose"]),
        verbose=ctx.obj["verbose"],
    )
    state = verifier.status()

    click.echo(BANNER)
    click.echo("VPS Backup Status")
    click.echo(BANNER)
    click.echo("")
    click.echo(f"Current time: {state['now']:%a %b %d %H:%M:%S %Y}")
    click.echo("")

    if state["last_log"]:
        if state["ran_today"]:
            click.echo("✓ Backup completed today")
        else:
            click.echo(f"✗ No backup today (last backup: {state['last_backup_date']})")
        click.echo("")
        click.echo("Last backup details:")
        for line in state["log_tail"]:
            click.echo(line)
    else:
        click.echo("✗ No backups found")

    click.echo("")
    click.echo("Cron schedule:")
    if state["schedule_error"]:
        click.echo(f"  unavailable: {state['schedule_error']}")
    elif state["schedule"]:
        for line in state["schedule"]:
            click.echo(f"  {line}")
    else:
        click.echo("  not scheduled")


@cli.command()
@click.argument("timestamp", required=False)
@click.pass_context
def restore(ctx: click.Context, timestamp: Optional[str]) -> None:
    """Restore PostgreSQL, MySQL and Redis from the backup TIMESTAMP.

    Every engine is restored only after typing 'yes' at its prompt.
    Restores overwrite live data and are not rolled back.
    """
    config = _load_config(ctx)
    storage = _storage(config)

    click.echo(BANNER)
    click.echo("VPS Backup Restore")
    click.echo(BANNER)
    click.echo("")
    click.echo("WARNING: This will restore backups and may overwrite existing data!")
    click.echo("")

    if not timestamp:
        click.echo(f"Usage: {ctx.command_path} <backup_date>")
        click.echo("")
        click.echo("Available backup dates:")
        for available in storage.available_timestamps():
            click.echo(available)
        ctx.exit(1)

    from vpsbackup.backup import RecoveryManager
    from vpsbackup.utils.commands import CommandRunner

    recovery = RecoveryManager(
        storage,
        config,
        runner=CommandRunner(
            timeout=config["commands"]["timeout"],
            verbose=ctx.obj["verbose"],
        ),
        confirm=_confirm,
        echo=click.echo,
        verbose=ctx.obj["verbose"],
    )

    if ctx.obj["dry_run"]:
        from vpsbackup.backup.storage import CATEGORY_LABELS

        for category, path in recovery.plan(timestamp).items():
            label = CATEGORY_LABELS[category]
            if path:
                click.echo(f"DRY RUN: Would restore {label} from {path}")
            else:
                click.echo(f"DRY RUN: {label} backup not found: {recovery.expected_path(category, timestamp)}")
        return

    recovery.restore(timestamp)


@cli.command()
@click.option("--remove", is_flag=True, help="Remove the scheduled backup entry")
@click.option("--show", is_flag=True, help="Show the scheduled backup entry")
@click.option("--cron", "cron_expression", help="Override the cron expression (e.g. '0 2 * * *')")
@click.pass_context
def schedule(ctx: click.Context, remove: bool, show: bool, cron_expression: Optional[str]) -> None:
    """Register the daily backup in the crontab.

    Any existing entry for the backup is replaced, so exactly one remains.
    """
    config = _load_config(ctx)

    from vpsbackup.backup import BackupScheduler, ScheduleEntry

    entry = ScheduleEntry.from_config(config["schedule"])
    if cron_expression:
        if len(cron_expression.split()) != 5:
            raise click.BadParameter("Cron expression must have five fields", param_hint="--cron")
        entry.cron = cron_expression

    scheduler = BackupScheduler(verbose=ctx.obj["verbose"])

    try:
        if show:
            lines = scheduler.current_schedule(entry.marker)
            if lines:
                for line in lines:
                    click.echo(line)
            else:
                click.echo("No backup schedule installed")
            return

        if ctx.obj["dry_run"]:
            action = "remove entries containing" if remove else "install"
            target = entry.marker if remove else entry.line
            click.echo(f"DRY RUN: Would {action}: {target}")
            return

        if remove:
            removed = scheduler.remove_schedule(entry.marker)
            click.echo(f"✓ Removed {len(removed)} scheduled backup entr{'y' if len(removed) == 1 else 'ies'}")
            return

        result = scheduler.ensure_schedule(entry)
        if result["changed"]:
            click.echo(f"✓ Cron job scheduled: {result['entry']}")
        else:
            click.echo(f"✓ Cron job already scheduled: {result['entry']}")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, context="Updating crontab")


@cli.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Manage the vps-backup configuration file."""
    pass


@config.command("init")
@click.argument("path", default="/etc/vps-backup/config.yml")
@click.option("--backup-root", help="Backup root directory to write into the file")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def config_init(ctx: click.Context, path: str, backup_root: Optional[str], force: bool) -> None:
    """Write a commented default configuration file to PATH."""
    from vpsbackup.config import ConfigManager

    manager = ConfigManager()

    if ctx.obj["dry_run"]:
        click.echo(f"DRY RUN: Would write configuration to {path}")
        click.echo(manager.render_default_config({"backup_root": backup_root} if backup_root else None))
        return

    try:
        written = manager.initialize_config(path, backup_root=backup_root, force=force)
        click.echo(f"✓ Configuration written: {written}")
    except FileExistsError as e:
        click.echo(f"✗ {e}", err=True)
        click.echo("Use --force to overwrite it", err=True)
        ctx.exit(1)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, context="Writing configuration")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration (defaults merged with the file)."""
    effective = _load_config(ctx)
    click.echo(yaml.dump(effective, default_flow_style=False, sort_keys=False).rstrip())


@config.command("validate")
@click.argument("path", required=False)
@click.pass_context
def config_validate(ctx: click.Context, path: Optional[str]) -> None:
    """Validate a configuration file."""
    from vpsbackup.config import ConfigManager, ConfigValidator

    if path is None:
        try:
            path = ConfigManager(ctx.obj.get("config_path")).get_config_path()
        except FileNotFoundError as e:
            ctx.obj["error_handler"].exit_with_error(e)

    if path is None:
        click.echo("No configuration file found; built-in defaults are in effect")
        return

    errors = ConfigValidator().validate_config_file(path)
    if errors:
        click.echo(f"✗ {path}", err=True)
        click.echo(format_validation_errors(errors), err=True)
        ctx.exit(1)

    click.echo(f"✓ {path} is valid")


def _forward(command: str, prog_name: str) -> None:
    cli.main(args=[command] + sys.argv[1:], prog_name=prog_name)


def backup_main() -> None:
    """Console script: run a backup."""
    _forward("run", "vps-backup-run")


def verify_main() -> None:
    """Console script: verification report."""
    _forward("verify", "verify-backups")


def restore_main() -> None:
    """Console script: restore a backup set."""
    _forward("restore", "restore-backup")


def status_main() -> None:
    """Console script: backup status."""
    _forward("status", "backup-status")


if __name__ == "__main__":
    cli()
