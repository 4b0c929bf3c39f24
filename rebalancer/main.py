"""
Main entry point for the CL position rebalancer.

Commands:
    run           evaluate the position and rebalance if needed (--watch to repeat)
    withdraw      force-close the configured position
    status        show pool, position and what `run` would do
    report        stats, volume, profitability and recent transactions
    volume        volume per transaction type
    profit        profitability per token
    transactions  recent transactions (--limit, --type)
    stats         per-type counts and success rates
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from domain import ConfigError, PersistenceError, RebalancerError, TransactionType
from rebalancer import reporting
from rebalancer.config import DEFAULT_CONFIG_FILE, ConfigStore, Settings
from rebalancer.lifecycle import PositionLifecycleManager
from rebalancer.models.ledger import close_db, default_db_url, init_db
from rebalancer.repositories.ledger import LedgerQuery, QueryKind, TransactionLedger
from rebalancer.services.bridge import CrossChainBridgeCoordinator
from rebalancer.services.chain import Web3ChainAccount, Web3ChainQueryClient
from rebalancer.services.executor import ExecutorBridgingClient, ExecutorTxClient
from rebalancer.services.keys import EnvKeyStore
from rebalancer.services.monitor import PositionMonitor
from rebalancer.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d-%m-%Y"
WORKFLOW_COMMANDS = ("run", "withdraw", "status")
REPORT_COMMANDS = ("report", "volume", "profit", "transactions", "stats")
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_date(value: str) -> datetime:
    """Parse a DD-MM-YYYY date."""
    try:
        return datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected DD-MM-YYYY")


class CliOptions(BaseModel):
    """Validated command-line options."""
    command: str
    environment: Optional[str] = None
    config_file: Path = Path(DEFAULT_CONFIG_FILE)
    log_file: Optional[Path] = None
    no_log: bool = False
    watch: Optional[float] = Field(None, gt=0, description="Seconds between runs")
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    csv: bool = False
    limit: int = Field(20, gt=0)
    transaction_type: Optional[TransactionType] = None

    @model_validator(mode='after')
    def validate_window(self) -> 'CliOptions':
        """End date is inclusive and must not precede the start date."""
        if self.end is not None:
            self.end = self.end.replace(hour=0, minute=0, second=0) + timedelta(days=1, seconds=-1)
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("--start must not be after --end")
        return self


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Cross-chain CL position rebalancer')
    parser.add_argument('--environment', choices=['mainnet', 'testnet'], help='Network environment (default: ENVIRONMENT or mainnet)')
    parser.add_argument('--config-file', type=Path, default=Path(DEFAULT_CONFIG_FILE), help='Path to the config JSON')
    parser.add_argument('--log-file', type=Path, help='Log file path (default: logs/<command>-<date>.log)')
    parser.add_argument('--no-log', action='store_true', help='Do not write a log file')

    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help='Rebalance the position if needed')
    run.add_argument('--watch', type=float, metavar='SECONDS', help='Repeat every SECONDS until interrupted')
    subparsers.add_parser('withdraw', help='Withdraw the configured position')
    subparsers.add_parser('status', help='Show pool and position state')

    for name, help_text in (
        ('report', 'Full report'),
        ('volume', 'Volume per transaction type'),
        ('profit', 'Profitability per token'),
        ('transactions', 'Recent transactions'),
        ('stats', 'Transaction statistics'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('--start', type=parse_date, help='Start date DD-MM-YYYY')
        sub.add_argument('--end', type=parse_date, help='End date DD-MM-YYYY (inclusive)')
        sub.add_argument('--csv', action='store_true', help='Also export to reports/')
        if name == 'transactions':
            sub.add_argument('--limit', type=int, default=20, help='Number of transactions')
            sub.add_argument('--type', dest='transaction_type', choices=[t.value for t in TransactionType], help='Filter by type')

    return parser


def get_options(argv: Optional[List[str]] = None) -> CliOptions:
    """Parse and validate arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return CliOptions(**{k: v for k, v in vars(args).items() if v is not None})
    except ValidationError as e:
        parser.error(str(e))


def setup_logging(options: CliOptions) -> Optional[logging.Handler]:
    """Configure root logging; returns the file handler, if any."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_handler = None
    if not options.no_log:
        log_file = options.log_file or Path("logs") / f"{options.command}-{datetime.now():%Y-%m-%d}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, handlers=handlers, force=True)
    return file_handler


async def open_ledger(settings: Settings, signer: str, shutdown: ShutdownCoordinator) -> TransactionLedger:
    db_url = settings.database_url or default_db_url(signer)
    try:
        await init_db(db_url)
    except Exception as e:
        raise PersistenceError(f"Failed to open ledger database: {e}", step="ledger.init") from e
    shutdown.register("ledger", close_db)
    return TransactionLedger()


def build_manager(
    settings: Settings,
    store: ConfigStore,
    keys: EnvKeyStore,
    ledger: TransactionLedger,
    shutdown: ShutdownCoordinator,
    require_executor: bool = True,
) -> PositionLifecycleManager:
    """Wire the lifecycle manager with its web3 and executor collaborators."""
    config = store.load()
    base_chain, mirror_chain = settings.base_chain_id, settings.mirror_chain_id
    signer = keys.get_address(base_chain)

    position_manager = config.pool.position_manager or settings.position_manager
    if not position_manager:
        raise ConfigError("No position manager address (pool.positionManager or POSITION_MANAGER_ADDRESS)", step="config")

    query = Web3ChainQueryClient(base_chain, position_manager)
    monitor = PositionMonitor(query, config.pool, page_size=settings.positions_page_size)

    tx_client = None
    if require_executor:
        tx_client = ExecutorTxClient(
            settings.require_executor(),
            settings.executor_api_key,
            base_chain,
            position_manager=position_manager,
            timeout=settings.executor_timeout,
        )

    mirror_account = mirror_query = mirror_tx_client = bridge = None
    if config.mirror is not None:
        mirror_account = Web3ChainAccount(mirror_chain, keys.get_address(mirror_chain))
        mirror_query = Web3ChainQueryClient(mirror_chain)
        if require_executor:
            mirror_tx_client = ExecutorTxClient(
                settings.require_executor(),
                settings.executor_api_key,
                mirror_chain,
                timeout=settings.executor_timeout,
            )
            bridge = CrossChainBridgeCoordinator(
                ExecutorBridgingClient(
                    settings.require_executor(),
                    settings.executor_api_key,
                    settings.bridge_status_url,
                    timeout=settings.executor_timeout,
                ),
                poll_interval=settings.bridge_poll_interval,
                max_wait=settings.bridge_max_wait,
                shutdown=shutdown,
            )

    return PositionLifecycleManager(
        config=config,
        config_store=store,
        monitor=monitor,
        tx_client=tx_client,
        ledger=ledger,
        base_account=Web3ChainAccount(base_chain, signer),
        mirror_account=mirror_account,
        mirror_tx_client=mirror_tx_client,
        mirror_query=mirror_query,
        bridge=bridge,
        shutdown=shutdown,
        min_gas_balance=settings.gas_reserve(base_chain).amount,
    )


async def run_workflow(options: CliOptions, manager: PositionLifecycleManager, shutdown: ShutdownCoordinator) -> int:
    if options.command == "status":
        print(reporting.format_status(await manager.status()))
        return 0

    if options.command == "withdraw":
        print(reporting.format_withdraw(await manager.withdraw()))
        return 0

    while True:
        result = await manager.run()
        print(reporting.format_result(result))
        if options.watch is None or shutdown.is_shutdown_requested:
            return 0 if result.ok else 1
        logger.info(f"Next run in {options.watch:.0f}s")
        if await shutdown.wait(options.watch):
            return 0 if result.ok else 1


async def run_report(options: CliOptions, ledger: TransactionLedger, signer: str) -> int:
    window = dict(start=options.start, end=options.end, address=signer)
    command = options.command

    if command in ("report", "stats"):
        print("Transaction statistics")
        print(reporting.format_stats(await ledger.summarize_by_type(**window)))
    if command in ("report", "volume"):
        print("\nVolume")
        print(reporting.format_volume(await ledger.aggregate_volume(**window)))
    if command in ("report", "profit"):
        print("\nProfitability")
        print(reporting.format_profitability(await ledger.aggregate_profitability(**window)))
    if command in ("report", "transactions"):
        if options.transaction_type is not None:
            records = await ledger.query_by_type(
                options.transaction_type, signer, options.limit, options.start, options.end
            )
        else:
            records = await ledger.query_recent(signer, options.limit, 0, options.start, options.end)
        print("\nTransactions")
        print(reporting.format_transactions(records))

    if options.csv:
        kind = {
            "report": QueryKind.RECENT,
            "transactions": QueryKind.BY_TYPE if options.transaction_type else QueryKind.RECENT,
            "volume": QueryKind.VOLUME,
            "profit": QueryKind.PROFITABILITY,
            "stats": QueryKind.STATS,
        }[command]
        query = LedgerQuery(
            kind=kind,
            transaction_type=options.transaction_type,
            address=signer,
            limit=options.limit if command == "transactions" else 10_000,
            start=options.start,
            end=options.end,
        )
        path = Path("reports") / f"{command}-{datetime.now():%Y%m%d-%H%M%S}.csv"
        await ledger.export_to_delimited_file(query, path)
        print(f"\nExported to {path}")
    return 0


def close_log_file(handler: logging.Handler) -> None:
    logging.getLogger().removeHandler(handler)
    handler.close()


async def execute(options: CliOptions, shutdown: ShutdownCoordinator) -> int:
    settings = Settings.from_env(options.environment)
    keys = EnvKeyStore()
    signer = keys.get_address(settings.base_chain_id)
    logger.info(f"Environment: {settings.environment}, signer: {signer}")

    ledger = await open_ledger(settings, signer, shutdown)
    if options.command in REPORT_COMMANDS:
        return await run_report(options, ledger, signer)

    manager = build_manager(
        settings,
        ConfigStore(options.config_file),
        keys,
        ledger,
        shutdown,
        require_executor=options.command != "status",
    )
    return await run_workflow(options, manager, shutdown)


async def async_main(options: CliOptions, file_handler: Optional[logging.Handler] = None) -> int:
    async with ShutdownCoordinator() as shutdown:
        if file_handler is not None:
            shutdown.register("log file", lambda: close_log_file(file_handler))
        shutdown.install_signal_handlers()

        try:
            exit_code = await execute(options, shutdown)
        except RebalancerError as e:
            logger.error(f"{type(e).__name__}: {e}")
            print(f"Error: {e}", file=sys.stderr)
            exit_code = 1
        except Exception as e:
            logger.exception(f"Unexpected error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            exit_code = 1

        logger.info(f"Finished {options.command} with exit code {exit_code}")
        return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    options = get_options(argv)
    file_handler = setup_logging(options)
    logger.info(f"Starting {options.command}")
    return asyncio.run(async_main(options, file_handler))


if __name__ == '__main__':
    sys.exit(main())
