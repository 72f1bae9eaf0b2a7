"""CLI interface for davbackup."""

import sys
import logging

import click

from davbackup import configure_logging
from davbackup.config import NAME_PATTERN, build_options, get_config
from davbackup.backup.errors import FatalBackupError
from davbackup.backup.executor import run_backup

logger = logging.getLogger(__name__)

# option -> options it requires
IMPLIES = {
    'exclude_dirs': ('dirs',),
    'mysql_db': ('mysql_login',),
    'mysql_login': ('mysql_db',),
    'mysql_pass': ('mysql_db',),
    'mysql_host': ('mysql_db',),
    'mysql_port': ('mysql_db',),
    'mongo_login': ('mongo_db',),
    'mongo_pass': ('mongo_db',),
    'mongo_host': ('mongo_db',),
    'mongo_port': ('mongo_db',),
}

OPTION_NAMES = {
    'dirs': '--dirs',
    'exclude_dirs': '--excludeDirs',
    'mysql_db': '--mysqlDb',
    'mysql_login': '--mysqlLogin',
    'mysql_pass': '--mysqlPass',
    'mysql_host': '--mysqlHost',
    'mysql_port': '--mysqlPort',
    'mongo_db': '--mongoDb',
    'mongo_login': '--mongoLogin',
    'mongo_pass': '--mongoPass',
    'mongo_host': '--mongoHost',
    'mongo_port': '--mongoPort',
}


def _validate_name(ctx, param, value):
    if not NAME_PATTERN.match(value):
        raise click.BadParameter('must be alphanumeric')
    return value


def check_implied_options(values: dict):
    """
    Raise a UsageError when an option is given without the ones it needs.

    Args:
        values: Parsed option values keyed by parameter name
    """
    for option, required in IMPLIES.items():
        if not values.get(option):
            continue
        for other in required:
            if not values.get(other):
                raise click.UsageError(
                    f"{OPTION_NAMES[option]} requires {OPTION_NAMES[other]}"
                )


@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--name', required=True, callback=_validate_name, help='Alphanumeric backup name')
@click.option('--daysToKeep', 'days_to_keep', type=float, default=None,
              help='Delete backups older than this many days (default: keep all)')
@click.option('--retries', type=click.IntRange(min=0), default=1, show_default=True,
              help='Retries for each failed backup')
@click.option('--dirs', multiple=True, help='Directory to back up (repeatable)')
@click.option('--excludeDirs', 'exclude_dirs', multiple=True, help='Path to exclude (repeatable)')
@click.option('--dav', required=True, help="WebDAV provider ('box', 'yandex') or base URL")
@click.option('--davDir', 'dav_dir', default='/backup', show_default=True, help='Remote directory')
@click.option('--davLogin', 'dav_login', required=True, help='WebDAV login')
@click.option('--davPass', 'dav_pass', required=True, envvar='DAVBACKUP_DAV_PASS', help='WebDAV password')
@click.option('--mysqlDb', 'mysql_db', help='MySQL database to dump')
@click.option('--mysqlLogin', 'mysql_login', help='MySQL user')
@click.option('--mysqlPass', 'mysql_pass', envvar='DAVBACKUP_MYSQL_PASS', help='MySQL password')
@click.option('--mysqlHost', 'mysql_host', help='MySQL host [default: localhost]')
@click.option('--mysqlPort', 'mysql_port', type=int, help='MySQL port [default: 3306]')
@click.option('--mongoDb', 'mongo_db', help='MongoDB database to dump')
@click.option('--mongoLogin', 'mongo_login', help='MongoDB user')
@click.option('--mongoPass', 'mongo_pass', envvar='DAVBACKUP_MONGO_PASS', help='MongoDB password')
@click.option('--mongoHost', 'mongo_host', help='MongoDB host [default: localhost]')
@click.option('--mongoPort', 'mongo_port', type=int, help='MongoDB port [default: 27017]')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def cli(verbose, **values):
    """Back up directories and databases to a WebDAV store."""
    app_config = get_config()
    configure_logging(debug=verbose or app_config.DEBUG, log_dir=app_config.LOG_DIR)

    check_implied_options(values)

    try:
        options = build_options(**values)
    except ValueError as e:
        raise click.UsageError(str(e))

    try:
        result = run_backup(options, timeout=app_config.TIMEOUT_HOURS * 60 * 60)
    except FatalBackupError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Backup run failed: {e}")
        sys.exit(1)

    if not result.success:
        failed = ', '.join(stage for stage, ok in result.stages.items() if not ok)
        logger.error(f"Backup run finished with failed stages: {failed}")
        sys.exit(1)

    sys.exit(0)


def main():
    cli(prog_name='davbackup')
