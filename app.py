#!/usr/bin/env python3
"""
Polymarket Copy-Trading Backtest - Command Line Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Creates, runs and inspects backtest tasks against the durable
store named by DATABASE_URL.

- One command per invocation
- Runs are resumable: stop, retry, run again
- A stop issued from another process is picked up before the
  running task's next page

============================================================
USAGE
============================================================
    python app.py create --name "whale copy" --leader-id 7 \\
        --leader-address 0xabc... --balance 1000 --days 7
    python app.py run 1
    python app.py stop 1
    python app.py retry 1
    python app.py detail 1
    python app.py trades 1 --page 2 --size 50
    python app.py list --status COMPLETED --sort-by profit_rate
    python app.py delete 1

Environment is loaded from .env (see backtesting.config).

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

import aiohttp
from dotenv import load_dotenv

from backtesting import (
    BacktestConfig,
    BacktestService,
    CreateTaskRequest,
    ReplayEngine,
    TaskListQuery,
    TaskStatus,
)
from core.clock import SystemClock
from core.exceptions import BacktestException, ConfigurationError
from data_sources import HistoricalTradeFetcher, PolymarketActivitySource
from market_data import (
    CachedMarketMetadata,
    ClobOrderBookClient,
    CompositePriceOracle,
    GammaMarketClient,
)
from storage import Database, SqlAlchemyTaskStore
from storage.repositories.exceptions import RepositoryException
from trade_filters import TradeFilterPipeline


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("backtest")


# ============================================================
# RUNTIME WIRING
# ============================================================

class BacktestRuntime:
    """
    Owns the database and the shared HTTP session for one command.

    Usage:
        async with BacktestRuntime(config) as runtime:
            await runtime.service.run_task(1)
    """

    def __init__(self, config: BacktestConfig):
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
            )
        self._config = config
        self._database = Database(config.database)
        self._http: Optional[aiohttp.ClientSession] = None
        self.service: Optional[BacktestService] = None

    async def __aenter__(self) -> "BacktestRuntime":
        await self._database.connect()
        await self._database.create_all()

        config = self._config
        timeout = config.fetcher.request_timeout_seconds
        self._http = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout),
        )

        clock = SystemClock()
        store = SqlAlchemyTaskStore(self._database)
        source = PolymarketActivitySource(config.endpoints.data_api_url, timeout, self._http)
        metadata = CachedMarketMetadata(
            GammaMarketClient(config.endpoints.gamma_api_url, timeout, self._http)
        )
        order_books = ClobOrderBookClient(config.endpoints.clob_api_url, timeout, self._http)
        oracle = CompositePriceOracle(metadata, order_books, config.engine.mark_price_scale)

        engine = ReplayEngine(
            store=store,
            fetcher=HistoricalTradeFetcher(source, config.fetcher),
            metadata=metadata,
            oracle=oracle,
            filters=TradeFilterPipeline(order_books=order_books, clock=clock),
            config=config.engine,
            clock=clock,
        )
        self.service = BacktestService(store, engine, config.defaults, clock)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._http is not None:
            await self._http.close()
            self._http = None
        await self._database.disconnect()


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal number: {value}")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="polymarket-backtest",
        description="Copy-trading backtests over a Polymarket leader's trade history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default=None,
        help="Logging format (default: LOG_FORMAT or text)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    # --------------------------------------------------------
    # create
    # --------------------------------------------------------
    create = commands.add_parser("create", help="Create a PENDING task")
    create.add_argument("--name", required=True, help="Task name")
    create.add_argument("--leader-id", type=int, required=True, help="Leader id")
    create.add_argument("--leader-address", required=True, help="Leader wallet address")
    create.add_argument("--balance", type=_decimal, required=True, help="Initial balance")
    create.add_argument("--days", type=int, required=True, help="Lookback window (1-15 days)")
    create.add_argument("--copy-mode", choices=["RATIO", "FIXED"], default=None)
    create.add_argument("--copy-ratio", type=_decimal, default=None)
    create.add_argument("--fixed-amount", type=_decimal, default=None)
    create.add_argument("--max-order-size", type=_decimal, default=None)
    create.add_argument("--min-order-size", type=_decimal, default=None)
    create.add_argument("--max-daily-loss", type=_decimal, default=None)
    create.add_argument("--max-daily-orders", type=int, default=None)
    create.add_argument("--slippage", type=_decimal, default=None, help="Slippage percent")
    create.add_argument("--no-sell", action="store_true", help="Ignore leader SELL trades")
    create.add_argument("--keyword-mode", choices=["DISABLED", "WHITELIST", "BLACKLIST"], default=None)
    create.add_argument("--keyword", action="append", dest="keywords", default=None,
                        help="Market title keyword (repeatable)")
    create.add_argument("--run", action="store_true", help="Run the task right after creating it")

    # --------------------------------------------------------
    # lifecycle
    # --------------------------------------------------------
    for name, help_text in (
        ("run", "Run a PENDING task"),
        ("stop", "Stop a RUNNING task"),
        ("retry", "Return a STOPPED or FAILED task to PENDING"),
        ("delete", "Delete a task and its ledger"),
        ("detail", "Show task, configuration and statistics"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("task_id", type=int)

    # --------------------------------------------------------
    # queries
    # --------------------------------------------------------
    trades = commands.add_parser("trades", help="Page through a task's ledger")
    trades.add_argument("task_id", type=int)
    trades.add_argument("--page", type=int, default=1)
    trades.add_argument("--size", type=int, default=20)

    listing = commands.add_parser("list", help="List tasks")
    listing.add_argument("--leader-id", type=int, default=None)
    listing.add_argument("--status", choices=[s.value for s in TaskStatus], default=None)
    listing.add_argument("--sort-by", choices=["created_at", "profit_amount", "profit_rate"],
                         default="created_at")
    listing.add_argument("--sort-order", choices=["asc", "desc"], default="desc")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--size", type=int, default=20)

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ============================================================
# COMMANDS
# ============================================================

async def execute(args: argparse.Namespace, config: BacktestConfig) -> int:
    """Run one CLI command. Returns the process exit code."""
    logger = logging.getLogger("backtest")

    async with BacktestRuntime(config) as runtime:
        service = runtime.service
        try:
            if args.command == "create":
                task = await service.create_task(CreateTaskRequest(
                    task_name=args.name,
                    leader_id=args.leader_id,
                    leader_address=args.leader_address,
                    initial_balance=args.balance,
                    backtest_days=args.days,
                    copy_mode=args.copy_mode,
                    copy_ratio=args.copy_ratio,
                    fixed_amount=args.fixed_amount,
                    max_order_size=args.max_order_size,
                    min_order_size=args.min_order_size,
                    max_daily_loss=args.max_daily_loss,
                    max_daily_orders=args.max_daily_orders,
                    slippage_percent=args.slippage,
                    support_sell=False if args.no_sell else None,
                    keyword_filter_mode=args.keyword_mode,
                    keywords=args.keywords,
                ))
                if args.run:
                    task = await service.run_task(task.id)
                _print_json(task.to_dict())

            elif args.command == "run":
                task = await service.run_task(args.task_id)
                _print_json(task.to_dict())

            elif args.command == "stop":
                _print_json((await service.stop_task(args.task_id)).to_dict())

            elif args.command == "retry":
                _print_json((await service.retry_task(args.task_id)).to_dict())

            elif args.command == "delete":
                await service.delete_task(args.task_id)
                print(f"Deleted task {args.task_id}")

            elif args.command == "detail":
                _print_json(await service.get_task_detail(args.task_id))

            elif args.command == "trades":
                result = await service.list_trades(args.task_id, args.page, args.size)
                _print_json({
                    "total": result.total,
                    "page": result.page,
                    "size": result.size,
                    "items": [t.to_dict() for t in result.items],
                })

            elif args.command == "list":
                result = await service.list_tasks(TaskListQuery(
                    leader_id=args.leader_id,
                    status=TaskStatus(args.status) if args.status else None,
                    sort_by=args.sort_by,
                    sort_order=args.sort_order,
                    page=args.page,
                    size=args.size,
                ))
                _print_json({
                    "total": result.total,
                    "page": result.page,
                    "size": result.size,
                    "items": [t.to_dict() for t in result.items],
                })

        except BacktestException as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        except RepositoryException as e:
            logger.error(f"Storage error: {e}")
            return 2
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    config = BacktestConfig.from_env()
    setup_logging(args.log_level or config.log_level, args.log_format or config.log_format)

    try:
        return asyncio.run(execute(args, config))
    except ConfigurationError as e:
        logging.getLogger("backtest").error(e.message)
        return 2
    except KeyboardInterrupt:
        logging.getLogger("backtest").info("Interrupted by user")
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
