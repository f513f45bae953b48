"""Command-line interface for the bank notification ingester."""

import sys
import click
from typing import Optional, Dict, Any
import logging

from dotenv import load_dotenv

from .mailbox.base import ChangeLogClient
from .parsers.assembler import TransactionAssembler
from .utils.config_manager import ConfigManager
from .utils.error_handler import ErrorHandler
from .utils.ingestion import IngestionOrchestrator
from .utils.processing_tracker import ProcessingTracker
from .utils.scheduler import IntervalScheduler
from .utils.sync_controller import SyncController
from .utils.transaction_store import TransactionStore
from .models.core import CycleResult, CycleStatus


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class NotifierCLI:
    """Wires configuration, mailbox client, store and orchestrator together"""

    def __init__(self,
                 config_path: Optional[str] = None,
                 client: Optional[ChangeLogClient] = None,
                 enable_console_log: bool = True):
        """Initialize CLI with configuration

        Args:
            config_path: Configuration file; standard locations are searched when omitted
            client: Change-log client to use instead of the Gmail client
            enable_console_log: Echo structured error events to stdout
        """
        self.config_manager = ConfigManager(config_path)
        self.config = self.config_manager.load_config()
        self.error_handler = ErrorHandler(
            log_directory=self.config.log_directory,
            enable_console=enable_console_log
        )
        self.processing_tracker = ProcessingTracker()

        if client is None:
            from .mailbox.gmail_client import GmailChangeLogClient
            client = GmailChangeLogClient(self.config)
        self.client = client

        self.store = TransactionStore(self.config.database_path)
        self.controller = SyncController(
            self.client, self.store, self.config, error_handler=self.error_handler
        )
        self.assembler = TransactionAssembler(self.config, error_handler=self.error_handler)
        self.orchestrator = IngestionOrchestrator(
            self.controller,
            self.assembler,
            self.store,
            error_handler=self.error_handler,
            tracker=self.processing_tracker
        )

    def run_once(self) -> CycleResult:
        return self.orchestrator.run_ingestion_cycle()

    def create_scheduler(self, interval: Optional[float] = None) -> IntervalScheduler:
        if interval is None:
            interval = self.config.poll_interval_seconds
        return IntervalScheduler(self.orchestrator, interval)

    def generate_config_template(self, output_path: str) -> bool:
        """Generate configuration template file"""
        try:
            self.config_manager.save_config_template(output_path)
            return True
        except OSError as e:
            self.error_handler.log_error(
                f"Failed to generate config template: {str(e)}",
                "INVALID_CONFIG_VALUE",
                exception=e,
                context={'output_path': output_path}
            )
            return False

    def get_status(self) -> Dict[str, Any]:
        """Get cursor, run statistics, store statistics and error summary"""
        return {
            'health': self.orchestrator.get_health(),
            'statistics': self.orchestrator.get_statistics(),
            'error_summary': self.error_handler.get_error_summary(),
            'config_summary': {
                'database_path': self.config.database_path,
                'poll_interval_seconds': self.config.poll_interval_seconds,
                'sender_domains': self.config.sender_domains,
                'missing_credentials': self.config_manager.get_missing_credentials(),
            }
        }


def _echo_cycle(result: CycleResult) -> None:
    click.echo(f"  Status: {result.status.value}")
    click.echo(f"  Processed: {result.processed}")
    click.echo(f"  Succeeded: {result.succeeded}")
    click.echo(f"  Skipped (incomplete): {result.skipped}")
    click.echo(f"  Outgoing (excluded): {result.outgoing}")
    click.echo(f"  Failed: {result.failed}")
    click.echo(f"  Duplicates: {result.duplicates}")
    if result.filtered:
        click.echo(f"  Filtered: {result.filtered}")
    if result.cursor_position:
        click.echo(f"  Cursor: {result.cursor_position}")
    click.echo(f"  Duration: {result.duration:.2f}s")


# CLI Commands using Click
@click.group()
@click.option('--config', '-c', help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """Bank Notifier - Ingest bank transfer notification emails into SQLite"""

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    load_dotenv()

    ctx.ensure_object(dict)
    if 'cli' not in ctx.obj:
        ctx.obj['cli'] = NotifierCLI(config)


@cli.command()
@click.pass_context
def run(ctx):
    """Run one ingestion cycle"""

    cli_instance = ctx.obj['cli']

    click.echo("Starting ingestion cycle...")
    result = cli_instance.run_once()

    if result.status is CycleStatus.ABORTED:
        click.echo(f"✗ Cycle aborted: {result.error}")
        sys.exit(1)

    if result.status is CycleStatus.ALREADY_PROCESSING:
        click.echo("⚠ A cycle is already running")
        return

    click.echo("✓ Ingestion cycle completed")
    _echo_cycle(result)


@cli.command()
@click.option('--interval', '-i', type=float, help='Seconds between cycles (default from config)')
@click.pass_context
def watch(ctx, interval):
    """Poll the mailbox on an interval until interrupted"""

    cli_instance = ctx.obj['cli']

    try:
        scheduler = cli_instance.create_scheduler(interval)
    except ValueError as e:
        click.echo(f"✗ {str(e)}")
        sys.exit(1)

    click.echo(f"Watching mailbox every {scheduler.interval_seconds}s (Ctrl+C to stop)")
    scheduler.run_forever()
    click.echo("✓ Stopped")


@cli.command()
@click.argument('output_path', default='notifier_config.json')
@click.option('--format', type=click.Choice(['json', 'yaml']), default='json', help='Configuration file format')
@click.pass_context
def init_config(ctx, output_path, format):
    """Generate configuration template file"""

    cli_instance = ctx.obj['cli']

    if format == 'yaml' and not output_path.endswith(('.yml', '.yaml')):
        output_path = output_path.replace('.json', '.yml')
        if not output_path.endswith('.yml'):
            output_path += '.yml'
    elif format == 'json' and not output_path.endswith('.json'):
        output_path = output_path.replace('.yml', '.json').replace('.yaml', '.json')
        if not output_path.endswith('.json'):
            output_path += '.json'

    if cli_instance.generate_config_template(output_path):
        click.echo(f"✓ Configuration template generated: {output_path}")
        click.echo("  Fill in the Gmail credentials or set them in the environment")
    else:
        click.echo("✗ Failed to generate configuration template")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show cursor, statistics and recorded errors"""

    cli_instance = ctx.obj['cli']

    try:
        status_info = cli_instance.get_status()
    except Exception as e:
        click.echo(f"✗ Error getting status: {str(e)}")
        sys.exit(1)

    click.echo("Bank Notifier Status")
    click.echo("=" * 40)

    config = status_info['config_summary']
    click.echo(f"Database: {config['database_path']}")
    click.echo(f"Poll interval: {config['poll_interval_seconds']}s")
    click.echo(f"Sender domains: {', '.join(config['sender_domains'])}")
    if config['missing_credentials']:
        click.echo(f"Missing credentials: {', '.join(config['missing_credentials'])}")
    click.echo()

    health = status_info['health']
    click.echo(f"Health: {health['status']}")
    cursor = health['cursor']
    if cursor:
        click.echo(f"Cursor: {cursor['position']} (updated {cursor['updated_at']}, "
                   f"{cursor['items_at_update']} items)")
    else:
        click.echo("Cursor: not set (next run bootstraps)")
    click.echo()

    store_stats = status_info['statistics']['store']
    click.echo(f"Stored transactions: {store_stats['total_transactions']}")
    click.echo(f"Stored today: {store_stats['today_transactions']}")
    if store_stats['last_transaction_time']:
        click.echo(f"Last stored: {store_stats['last_transaction_time']}")

    errors = status_info['error_summary']
    if errors['total_errors'] or errors['total_warnings']:
        click.echo()
        click.echo(f"Errors: {errors['total_errors']}, warnings: {errors['total_warnings']}")


@cli.command()
@click.option('--limit', '-n', default=10, help='Number of transactions to show')
@click.pass_context
def recent(ctx, limit):
    """Show the most recently stored transactions"""

    cli_instance = ctx.obj['cli']

    transactions = cli_instance.store.get_recent_transactions(limit)
    if not transactions:
        click.echo("No transactions stored")
        return

    click.echo(f"Recent transactions (latest {len(transactions)})")
    click.echo("=" * 60)
    for record in transactions:
        click.echo(f"{record.transaction_code}  {record.amount:>12,}  {record.transaction_time.isoformat()}")
        click.echo(f"    From: {record.sender_name or '-'} ({record.sender_account}, {record.sender_bank or '-'})")
        click.echo(f"    To: {record.receiver_account}")
        if record.description:
            click.echo(f"    Note: {record.description}")


@cli.command()
@click.option('--days', type=int, help='Keep transactions for this many days (default from config)')
@click.pass_context
def cleanup(ctx, days):
    """Delete transactions older than the retention period"""

    cli_instance = ctx.obj['cli']
    if days is None:
        days = cli_instance.config.retention_days

    try:
        deleted = cli_instance.store.cleanup_old_data(days_to_keep=days)
        click.echo(f"✓ Deleted {deleted} transactions older than {days} days")
    except Exception as e:
        click.echo(f"✗ Error during cleanup: {str(e)}")
        sys.exit(1)


if __name__ == '__main__':
    cli()
