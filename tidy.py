#!/usr/bin/env python3
"""
Photo Tidy CLI

Inventories a photo/video library, detects duplicates, plans a date-based
layout and applies it with a journaled copy or an undoable move.
"""

import signal
import sys
import logging
import click
from contextlib import contextmanager
from pathlib import Path
from colorama import init, Fore, Style

from photo_tidy import (
    CancellationToken,
    Config,
    PhotoTidy,
    TidyReporter,
    TqdmProgress,
)
from photo_tidy.models import ExecutionMode
from photo_tidy.utils import disk_status, format_bytes, get_available_space

# Initialize colorama for cross-platform colored output
init()

# Will be reconfigured after config is loaded
_file_handler = None
_console_handler = None

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(level: str = 'INFO', log_dir: Path = None):
    """Set up logging configuration."""
    global _console_handler
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    if _console_handler is not None:
        root_logger.removeHandler(_console_handler)

    _console_handler = logging.StreamHandler(sys.stdout)
    _console_handler.setFormatter(formatter)
    root_logger.addHandler(_console_handler)

    if log_dir:
        _setup_file_logging(log_dir, formatter, root_logger)

    # Reduce noise from libraries
    logging.getLogger('exifread').setLevel(logging.WARNING)


def _setup_file_logging(log_dir: Path, formatter: logging.Formatter, root_logger: logging.Logger,
                        log_name: str = 'photo_tidy'):
    """Add file handler to root logger."""
    global _file_handler
    log_dir.mkdir(parents=True, exist_ok=True)

    # Remove previous file handler if any
    if _file_handler is not None:
        root_logger.removeHandler(_file_handler)
        _file_handler.close()

    _file_handler = logging.FileHandler(log_dir / f'{log_name}.log')
    _file_handler.setFormatter(formatter)
    root_logger.addHandler(_file_handler)


def print_header(title: str):
    """Print a formatted header."""
    click.echo(f"\n{Fore.CYAN}{'=' * 60}{Style.RESET_ALL}")
    click.echo(f"{Fore.CYAN}{title.center(60)}{Style.RESET_ALL}")
    click.echo(f"{Fore.CYAN}{'=' * 60}{Style.RESET_ALL}\n")
    sys.stdout.flush()

def print_success(message: str):
    """Print success message."""
    click.echo(f"{Fore.GREEN}OK: {message}{Style.RESET_ALL}")
    sys.stdout.flush()

def print_warning(message: str):
    """Print warning message."""
    click.echo(f"{Fore.YELLOW}WARN: {message}{Style.RESET_ALL}")
    sys.stdout.flush()

def print_error(message: str):
    """Print error message."""
    click.echo(f"{Fore.RED}ERROR: {message}{Style.RESET_ALL}")
    sys.stdout.flush()

def print_info(message: str):
    """Print info message."""
    click.echo(f"{Fore.BLUE}INFO: {message}{Style.RESET_ALL}")
    sys.stdout.flush()


def print_errors(errors, limit: int = 5):
    for error in errors[:limit]:
        click.echo(f"  - {error}")
    if len(errors) > limit:
        click.echo(f"  - ... and {len(errors) - limit} more errors")


@contextmanager
def cancel_on_interrupt():
    """Yield a token that SIGINT cancels instead of killing the process."""
    token = CancellationToken()

    def _handler(signum, frame):
        print_warning("Interrupt received, finishing current work and stopping...")
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread; leave signal handling alone
        previous = None
    try:
        yield token
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


@contextmanager
def open_tidy(ctx, progress: bool = False):
    """Open the pipeline for the configured library, optionally with progress bars."""
    tidy = PhotoTidy(ctx.obj['config'].context())
    bars = TqdmProgress(tidy.emitter) if progress else None
    try:
        yield tidy
    finally:
        if bars is not None:
            bars.close()
        tidy.close()


def warn_if_low_space(config: Config, total_bytes: int):
    """Warn when a copy would leave less than the configured free space."""
    output_root = config.get_output_root()
    available = get_available_space(output_root)
    if not available:
        print_warning(f"Could not determine free space for {output_root}")
        return

    needed = total_bytes + config.get_min_free_space_gb() * 1024 * 1024 * 1024
    if needed > available:
        print_warning(f"Low disk space: need {format_bytes(needed)}, have {format_bytes(available)}")
    else:
        print_info(f"Space check OK: need {format_bytes(needed)}, have {format_bytes(available)}")


@click.group()
@click.option('--config', '-c', help='Path to configuration file')
@click.option('--log-level', '-l', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Logging level (overrides config)')
@click.pass_context
def cli(ctx, config, log_level):
    """Photo Tidy - deduplicate and organize photo libraries."""

    # Initial logging setup (console only)
    setup_logging(log_level or 'INFO')

    try:
        config_obj = Config(config)

        errors = config_obj.validate_config()
        if errors:
            print_error("Configuration validation failed:")
            for error in errors:
                click.echo(f"  - {error}")
            sys.exit(1)

        if log_level is None:
            logging.getLogger().setLevel(getattr(logging, str(config_obj.get_log_level()).upper(), logging.INFO))

        log_dir = config_obj.context().log_dir
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        log_name = ctx.invoked_subcommand or 'photo_tidy'
        _setup_file_logging(log_dir, formatter, logging.getLogger(), log_name)

        ctx.ensure_object(dict)
        ctx.obj['config'] = config_obj

    except Exception as e:
        print_error(f"Failed to load configuration: {e}")
        sys.exit(1)


@cli.command()
@click.option('--reindex', is_flag=True, help='Clear the inventory and rehash every file')
@click.option('--progress', is_flag=True, help='Show progress bars')
@click.pass_context
def scan(ctx, reindex, progress):
    """Scan the image root and update the inventory."""

    print_header("SCAN PHASE")

    try:
        with cancel_on_interrupt() as token, open_tidy(ctx, progress) as tidy:
            print_info(f"Scanning {tidy.context.image_root}...")
            summary = tidy.scan_media(reindex=reindex, cancel=token)
            reporter = TidyReporter(tidy.context)
            report_file = reporter.save_report(reporter.generate_scan_report(summary), 'scan')

        if summary.cancelled:
            print_warning("Scan cancelled; files hashed so far are kept")
        if summary.errors:
            print_warning(f"Scan completed with {len(summary.errors)} errors:")
            print_errors(summary.errors)

        print_success(f"Scan complete: {summary.total_files:,} files found")
        print_info(f"Hashed: {summary.hashed_files:,}, unchanged: {summary.skipped_files:,}, "
                   f"failed: {summary.failed_files:,}")
        print_info(f"Duplicate files: {summary.duplicate_files:,}")
        print_info(f"Report saved: {report_file}")

    except Exception as e:
        print_error(f"Scan failed: {e}")
        sys.exit(1)


@cli.command()
@click.option('--export', 'export_path', type=click.Path(dir_okay=False), help='Write the plan as JSON')
@click.option('--progress', is_flag=True, help='Show progress bars')
@click.pass_context
def plan(ctx, export_path, progress):
    """Plan destinations for every inventoried file."""

    print_header("PLAN PHASE")

    try:
        with cancel_on_interrupt() as token, open_tidy(ctx, progress) as tidy:
            summary = tidy.plan_targets(cancel=token)
            reporter = TidyReporter(tidy.context)
            report_file = reporter.save_report(reporter.generate_plan_report(summary), 'plan')
            if export_path:
                print_success(f"Plan exported: {reporter.export_plan(summary, Path(export_path))}")

        print_success(f"Plan complete: {summary.total_entries:,} entries")
        print_info(f"Unique: {summary.unique_entries:,}, duplicates: {summary.duplicate_entries:,}")
        print_info(f"Destination buckets: {summary.destination_buckets:,}")
        print_info(f"Total size: {format_bytes(summary.total_bytes)}")
        print_info(f"Report saved: {report_file}")

    except Exception as e:
        print_error(f"Planning failed: {e}")
        sys.exit(1)


@cli.command()
@click.option('--mode', '-m', type=click.Choice([m.value for m in ExecutionMode]), default='copy',
              show_default=True, help='Copy or move files into place')
@click.option('--dry-run/--no-dry-run', default=None, help='Perform dry run (override config)')
@click.option('--progress', is_flag=True, help='Show progress bars')
@click.pass_context
def execute(ctx, mode, dry_run, progress):
    """Apply the current plan."""

    print_header("EXECUTION PHASE")

    config = ctx.obj['config']
    if dry_run is None:
        dry_run = config.is_dry_run()

    try:
        with cancel_on_interrupt() as token, open_tidy(ctx, progress) as tidy:
            current = tidy.store.load_plan()
            if current is not None and mode == ExecutionMode.COPY.value and not dry_run:
                warn_if_low_space(config, current.total_bytes)

            summary = tidy.execute_plan(mode, dry_run, cancel=token)
            reporter = TidyReporter(tidy.context)
            report_file = reporter.save_report(reporter.generate_execution_report(summary), 'execute')

        if summary.dry_run:
            print_info("DRY RUN completed - no files were actually modified")
        if summary.cancelled:
            print_warning("Execution cancelled; committed items stay in place")
        for warning in summary.warnings:
            print_warning(warning)
        if summary.errors:
            print_warning(f"Execution completed with {len(summary.errors)} errors:")
            print_errors(summary.errors)

        print_success(f"Execution complete: {summary.succeeded:,} succeeded")
        print_info(f"Failed: {summary.failed:,}, skipped: {summary.skipped:,}")
        print_info(f"Report saved: {report_file}")

    except Exception as e:
        print_error(f"Execution failed: {e}")
        sys.exit(1)


@cli.command()
@click.option('--progress', is_flag=True, help='Show progress bars')
@click.pass_context
def undo(ctx, progress):
    """Move files back to where they came from."""

    print_header("UNDO PHASE")

    try:
        with cancel_on_interrupt() as token, open_tidy(ctx, progress) as tidy:
            summary = tidy.undo_moves(cancel=token)
            reporter = TidyReporter(tidy.context)
            report_file = reporter.save_report(reporter.generate_undo_report(summary), 'undo')

        if summary.cancelled:
            print_warning("Undo cancelled; remaining moves can be undone later")
        if summary.missing:
            print_warning(f"{summary.missing:,} files were no longer at their destination")
        if summary.errors:
            print_warning(f"Undo completed with {len(summary.errors)} errors:")
            print_errors(summary.errors)

        print_success(f"Undo complete: {summary.restored:,} files restored")
        print_info(f"Report saved: {report_file}")

    except Exception as e:
        print_error(f"Undo failed: {e}")
        sys.exit(1)


@cli.command()
@click.option('--mode', '-m', type=click.Choice([m.value for m in ExecutionMode]), default='copy',
              show_default=True, help='Copy or move files into place')
@click.option('--dry-run/--no-dry-run', default=None, help='Perform dry run (override config)')
@click.pass_context
def workflow(ctx, mode, dry_run):
    """Run complete workflow: scan -> plan -> execute."""

    print_header("COMPLETE PHOTO TIDY WORKFLOW")

    config = ctx.obj['config']
    if dry_run is None:
        dry_run = config.is_dry_run()

    if dry_run:
        print_info("Running in DRY RUN mode (set dry_run: false in config for live run)")

    try:
        print_info("Phase 1/3: Scanning image root...")
        ctx.invoke(scan, reindex=False, progress=True)

        print_info("\nPhase 2/3: Planning destinations...")
        ctx.invoke(plan, export_path=None, progress=True)

        print_info("\nPhase 3/3: Executing plan...")
        ctx.invoke(execute, mode=mode, dry_run=dry_run, progress=True)

        print_header("WORKFLOW COMPLETE!")

        if dry_run:
            print_warning("This was a DRY RUN - no files were actually modified")
        elif mode == ExecutionMode.MOVE.value:
            print_success("Files moved; run 'undo' to restore the original layout")
        else:
            print_success("Files copied into the organized library")

    except Exception as e:
        print_error(f"Workflow failed: {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show inventory, plan and log status."""

    print_header("PHOTO TIDY STATUS")

    config = ctx.obj['config']
    click.echo(f"Configuration: {config.config_path}")
    click.echo(f"Image root: {config.get_image_root()}")
    click.echo(f"Output root: {config.get_output_root()}")
    click.echo(f"Dry run mode: {config.is_dry_run()}")
    click.echo()

    try:
        with open_tidy(ctx) as tidy:
            state = tidy.status()
            report = TidyReporter(tidy.context).generate_status_report(
                state['counts'], state['plan'], state['incomplete']
            )

        click.echo(report)
        if state['incomplete']:
            print_warning(f"{len(state['incomplete'])} operations were interrupted; "
                          "re-run execute or undo to finish them")
        else:
            print_success("No unfinished operations")

    except Exception as e:
        print_error(f"Status failed: {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def disk(ctx):
    """Show free space where the organized library is written."""

    config = ctx.obj['config']

    try:
        info = disk_status(config.get_output_root())
    except OSError as e:
        print_error(f"Could not read disk usage: {e}")
        sys.exit(1)

    print_info(f"Path: {info['path']}")
    print_info(f"Available: {format_bytes(info['available_bytes'])} of {format_bytes(info['total_bytes'])}")
    minimum = config.get_min_free_space_gb() * 1024 * 1024 * 1024
    if info['available_bytes'] < minimum:
        print_warning(f"Below the configured minimum of {format_bytes(minimum)}")


if __name__ == '__main__':
    cli()
