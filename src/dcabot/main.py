"""Entry point for the DCA trading engine.

Subcommands:
    trade     run the live Trader for the configured exchange and pairs
    backtest  replay one pair over recent history and print the result
    optimize  run the hill-climbing optimizer over configured pairs

Settings come from the environment / .env via AppSettings. SIGINT/SIGTERM
stop the long-running commands gracefully.
"""

import argparse
import asyncio
import json
import signal
from collections.abc import Callable, Sequence
from dataclasses import replace
from decimal import Decimal

from dcabot.backtest.runner import BacktestRunner
from dcabot.config import AppSettings
from dcabot.data.database import TradingDatabase
from dcabot.data.loader import CandleLoader
from dcabot.data.store import CandleStore
from dcabot.exceptions import ConfigError
from dcabot.exchange.ccxt_driver import CcxtExchangeDriver
from dcabot.logging import get_logger, setup_logging
from dcabot.models import Pair, TimeFrame
from dcabot.optimizer import Optimizer
from dcabot.trader import Trader

logger = get_logger("dcabot.main")


def _setup_signal_handlers(stop: Callable[[], None]) -> None:
    """Route SIGINT/SIGTERM to a stop callback. Needs a running loop."""
    loop = asyncio.get_running_loop()

    def _handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handler)


def _parse_params(items: Sequence[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigError(f"Expected NAME=VALUE, got {item!r}")
        params[key.strip()] = value.strip()
    return params


def _resolve_pair(settings: AppSettings, args: argparse.Namespace) -> Pair:
    """Find the configured pair for the ticker, or build one from arguments."""
    configured = {p.ticker: p for p in settings.build_pairs()}
    pair = configured.get(args.ticker)
    if pair is None:
        pair = Pair.from_ticker(
            args.ticker, timeframe=TimeFrame.TF_1HOUR, exchange_name=settings.exchange.name
        )
    overrides: dict[str, object] = {}
    if args.strategy:
        overrides["strategy_name"] = args.strategy
    if args.timeframe:
        overrides["timeframe"] = TimeFrame(args.timeframe)
    if args.param:
        overrides["strategy_params"] = {**pair.strategy_params, **_parse_params(args.param)}
    if args.balance:
        overrides["backtest_initial_balance"] = args.balance
    return replace(pair, **overrides) if overrides else pair


async def run_trade(settings: AppSettings) -> None:
    pairs = settings.build_pairs()
    async with TradingDatabase(settings.database.path) as database:
        trader = Trader(CcxtExchangeDriver(settings.exchange), database, pairs, settings.trader)
        _setup_signal_handlers(trader.stop)
        await trader.start()


async def run_backtest(settings: AppSettings, args: argparse.Namespace) -> None:
    pair = _resolve_pair(settings, args)
    days = args.days or pair.backtest_days or settings.optimizer.min_backtest_days
    driver = CcxtExchangeDriver(settings.exchange)
    await driver.connect()
    try:
        async with TradingDatabase(settings.database.path) as database:
            runner = BacktestRunner(
                database,
                settings.backtest,
                loader=CandleLoader(driver, CandleStore(database)),
                driver=driver,
            )
            result, record = await runner.run_days(pair, days, event_log_path=args.events)
    finally:
        await driver.disconnect()

    logger.info("backtest_result_saved", result_id=record.id)
    print(json.dumps(result.to_dict(), indent=2))


async def run_optimize(settings: AppSettings) -> None:
    driver = CcxtExchangeDriver(settings.exchange)
    await driver.connect()
    try:
        async with TradingDatabase(settings.database.path) as database:
            runner = BacktestRunner(
                database,
                settings.backtest,
                loader=CandleLoader(driver, CandleStore(database)),
                driver=driver,
            )
            optimizer = Optimizer(runner, database, settings.build_pairs(), settings.optimizer)
            _setup_signal_handlers(optimizer.stop)
            await optimizer.run_forever()
    finally:
        await driver.disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dcabot", description="DCA trading engine")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("trade", help="run the live trading loop")

    backtest = sub.add_parser("backtest", help="backtest one pair")
    backtest.add_argument("ticker", help='pair ticker, e.g. "BTC/USDT"')
    backtest.add_argument("--days", type=int, help="days of history to replay")
    backtest.add_argument("--strategy", help="strategy name (overrides configuration)")
    backtest.add_argument(
        "--timeframe", choices=[tf.value for tf in TimeFrame], help="candle timeframe"
    )
    backtest.add_argument(
        "--param", action="append", default=[], metavar="NAME=VALUE",
        help="strategy parameter override (repeatable)",
    )
    backtest.add_argument("--balance", type=Decimal, help="initial virtual balance")
    backtest.add_argument("--events", help="write a JSONL event stream to this path")

    sub.add_parser("optimize", help="run the parameter optimizer")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = AppSettings()
    setup_logging(settings.log_level)

    if args.command == "trade":
        asyncio.run(run_trade(settings))
    elif args.command == "backtest":
        asyncio.run(run_backtest(settings, args))
    elif args.command == "optimize":
        asyncio.run(run_optimize(settings))


if __name__ == "__main__":
    main()
