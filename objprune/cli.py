"""
Command-line interface for objprune.

Prunes time-bucketed objects under a directory tree according to a
retention policy.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .audit import PruneAuditLogger
from .config import PruneConfigManager
from .errors import PruneError
from .metrics import PruneMetrics
from .models import PruneWarning
from .operation import PruneOperation
from .policies import PolicyFactory
from .timefilter import parse_end_time_arg, parse_time_arg

logger = logging.getLogger("objprune")


def setup_logging(verbose: bool = False, level: str = "INFO", log_file: Optional[str] = None):
    """Setup logging configuration."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def report_warning(warning: PruneWarning):
    logger.warning(f"{warning.code.value}: {warning}")


async def run_prune(args, config_manager: PruneConfigManager) -> int:
    """Run a prune operation."""
    settings = config_manager.build_settings(
        root=args.root,
        policy=args.policy,
        expect=args.expect,
        time_format=args.time_format,
        start=args.start,
        end=args.end,
        dry_run=args.dry_run,
        force=args.force or None,
        store_base=args.store_base
    )

    metrics = PruneMetrics() if args.metrics or config_manager.metrics_enabled() else None

    audit = None
    audit_settings = config_manager.audit_settings()
    if args.audit_dir:
        audit = PruneAuditLogger(args.audit_dir)
    elif audit_settings.get('enabled'):
        audit = PruneAuditLogger(audit_settings.get('logs_dir', 'logs/objprune'))

    operation = PruneOperation(settings, metrics=metrics, audit=audit)
    operation.on_warning(report_warning)

    summary = await operation.run()

    mode = "dry run" if summary.dry_run else "removal"
    print(f"\nPrune completed ({mode}): {summary.objects_seen} objects", file=sys.stderr)
    print(f"  Removed: {summary.removed}", file=sys.stderr)
    print(f"  Skipped: {summary.skipped}", file=sys.stderr)
    print(f"  Warnings: {len(summary.warnings)}", file=sys.stderr)
    print(f"  Duration: {summary.duration_seconds:.2f}s", file=sys.stderr)

    if metrics is not None:
        print("\nMetrics:", file=sys.stderr)
        for name, value in metrics.snapshot().items():
            print(f"  {name}: {value:g}", file=sys.stderr)

    return 0


def show_policies(args) -> int:
    """Show available retention policies."""
    print("Retention Policies")
    print("=" * 30)
    for name in PolicyFactory.available_policies():
        print(f"  {name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="objprune",
        description="Prune time-bucketed objects according to a retention policy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show what would be pruned under a backup tree
  objprune prune /backups/db --start 2020-01-01 --end 2020-12-31

  # Require both dump files on a day before it can be kept
  objprune prune /backups/db --expect '^dump\\.gz$' --expect '^manifest\\.json$'

  # Actually remove objects
  objprune prune /backups/db --execute --force
        """
    )

    parser.add_argument('--config', default=None,
                        help='Path to YAML configuration file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    prune_parser = subparsers.add_parser('prune', help='Prune objects under a root')
    prune_parser.add_argument('root', nargs='?', default=None,
                              help='Root of the tree to prune (absolute store path)')
    prune_parser.add_argument('--start', type=parse_time_arg, default=None,
                              help='Only consider objects at or after this time (ISO 8601)')
    prune_parser.add_argument('--end', type=parse_end_time_arg, default=None,
                              help='Only consider objects at or before this time (ISO 8601; a date covers the whole day)')
    prune_parser.add_argument('--policy', default=None,
                              help='Retention policy name (default: twicemonthly)')
    prune_parser.add_argument('--expect', action='append', default=None, metavar='REGEX',
                              help='Basename pattern every kept day must contain (repeatable)')
    prune_parser.add_argument('--time-format', default=None,
                              help="Format of times in object paths (default: '%%Y/%%m/%%d/%%H')")
    prune_parser.add_argument('--store-base', default=None,
                              help='Local directory that store paths are relative to')
    mode = prune_parser.add_mutually_exclusive_group()
    mode.add_argument('--dry-run', dest='dry_run', action='store_true', default=None,
                      help='Only report what would be removed (default)')
    mode.add_argument('--execute', dest='dry_run', action='store_false',
                      help='Remove objects')
    prune_parser.add_argument('--force', '-f', action='store_true',
                              help='Do not ask for confirmation')
    prune_parser.add_argument('--audit-dir', default=None,
                              help='Write decision logs and a run report to this directory')
    prune_parser.add_argument('--metrics', action='store_true',
                              help='Collect and print prune metrics')

    subparsers.add_parser('policies', help='Show available retention policies')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        config_manager = PruneConfigManager(args.config)
        logging_settings = config_manager.get_logging_settings()
        setup_logging(args.verbose, logging_settings.get('level', 'INFO'), logging_settings.get('file'))

        if args.command == 'prune':
            return asyncio.run(run_prune(args, config_manager))
        elif args.command == 'policies':
            return show_policies(args)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 2

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except PruneError as e:
        print(f"objprune: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        # unwritable audit directory or log file
        print(f"objprune: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
