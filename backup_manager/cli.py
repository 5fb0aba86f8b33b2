"""
Command-line interface.

Examples:
    backup-manager                                     # Backup all services (default)
    backup-manager --backup --service vaultwarden      # Backup only vaultwarden
    backup-manager --backup --service vaultwarden,authentik
    backup-manager --cleanup                           # Show what would be cleaned (dry run)
    backup-manager --cleanup --execute                 # Actually delete old backups
    backup-manager --cleanup --execute --non-interactive
    backup-manager --all                               # Backup then cleanup (dry run)
    backup-manager --daemon                            # Run on BACKUP_SCHEDULE / CLEANUP_SCHEDULE

Cron examples:
    0 3 * * * backup-manager --backup --non-interactive
    0 4 * * 0 backup-manager --cleanup --execute --non-interactive
"""

import sys
import argparse
import logging
from typing import List, Optional

from . import configure_logging, __version__
from .backup.orchestrator import FatalJobError
from .config import ConfigError, load_config
from .operations import run_backups, run_cleanup


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='backup-manager',
        description='Back up Docker services and directories and prune old archives.',
        epilog='Cleanup must be requested explicitly with --cleanup or --all.'
    )
    parser.add_argument('-b', '--backup', action='store_true',
                        help='Run backup operations (default if no operation is given)')
    parser.add_argument('-c', '--cleanup', action='store_true',
                        help='Run cleanup operations')
    parser.add_argument('-a', '--all', action='store_true',
                        help='Run both backup and cleanup')
    parser.add_argument('-e', '--execute', action='store_true',
                        help='Execute cleanup deletions (dry run otherwise)')
    parser.add_argument('-y', '--non-interactive', action='store_true',
                        help='Do not ask for confirmation (for cron/automation)')
    parser.add_argument('-s', '--service', metavar='NAMES',
                        help='Backup only specific service(s) (comma-separated)')
    parser.add_argument('--config', metavar='PATH',
                        help='Configuration file (default: $BACKUP_MANAGER_CONFIG or ./backup-manager.json)')
    parser.add_argument('--daemon', action='store_true',
                        help='Run scheduled backups/cleanups from the configured cron expressions')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def confirm_execute(input_func=input) -> bool:
    """Ask before permanently deleting backups."""
    logger.warning("Execute mode enabled. Backups will be permanently deleted!")
    try:
        answer = input_func("Are you sure you want to proceed? (yes/no): ")
    except EOFError:
        return False
    return answer.strip() == 'yes'


def main(argv: Optional[List[str]] = None, input_func=input) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.service is not None and not args.service.strip():
        parser.error('--service requires a service name')

    do_backup = args.backup or args.all
    do_cleanup = args.cleanup or args.all
    if not do_backup and not do_cleanup:
        do_backup = True
    dry_run = not args.execute
    service_filter = args.service.strip() if args.service else None

    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Error: {e}")
        return EXIT_FATAL

    configure_logging(config.LOG_LEVEL, config.LOG_DIR)

    if args.daemon:
        return run_daemon(config, dry_run, service_filter)

    if do_cleanup and not dry_run and not args.non_interactive:
        if not confirm_execute(input_func):
            logger.info("Aborted.")
            return EXIT_OK

    try:
        if do_backup:
            run_backups(config, service_filter)
        if do_cleanup:
            run_cleanup(config, dry_run=dry_run)
    except ConfigError as e:
        logger.error(f"Error: {e}")
        return EXIT_FATAL
    except FatalJobError as e:
        logger.error(f"Backup aborted: {e}")
        return EXIT_FATAL

    return EXIT_OK


def run_daemon(config, dry_run: bool, service_filter: Optional[str]) -> int:
    """Run until interrupted, firing operations on their cron schedules."""
    from . import scheduler as scheduler_module

    try:
        scheduler_module.init_scheduler(
            config,
            lambda: run_backups(config, service_filter),
            lambda: run_cleanup(config, dry_run=dry_run)
        )
    except ConfigError as e:
        logger.error(f"Error: {e}")
        return EXIT_FATAL

    if dry_run and config.CLEANUP_SCHEDULE:
        logger.info("Scheduled cleanups run in dry-run mode; pass --execute to delete")

    try:
        scheduler_module.start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        scheduler_module.stop_scheduler(wait=False)
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
