#!/usr/bin/env python3
"""
Replay a strategy-tester ledger against a price series and save the results.

**Purpose**: This script runs the whole pipeline for one report:
  1. Read the scraped ledger CSV (malformed rows are skipped and logged).
  2. Read the newline-delimited JSON price feed, if one is given.
  3. Compute ledger metrics and, with prices, the per-bar valuation.
  4. Save trades, valuations and metrics under the output directory.

**Usage**:
    From project root:
    ```bash
    python actions/run_report_replay.py --ledger data/eurusd_ledger.csv \\
        --prices data/eurusd_m15.ndjson --symbol "EURUSD,M15" --platform MT4
    ```

**Outputs** (saved to --output-dir, default data/results/):
  - <symbol>_trades.csv: Normalized ledger in replay order.
  - <symbol>_valuations.csv: One row per bar (only when prices are given).
  - <symbol>_metrics.json: Ledger metrics.

**Exit codes**:
  - 0: Success.
  - 1: Input error (missing file, bad columns, empty ledger, bad platform).
"""

import argparse
import sys
from pathlib import Path

# Ensure project root is on path for imports
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from mtm_replay.analytics.trade_views import filter_valuations
from mtm_replay.config.settings import get_settings
from mtm_replay.data.io import (
    read_ledger_csv,
    write_metrics_json,
    write_trades_csv,
    write_valuations_csv,
)
from mtm_replay.data.price_feed import read_price_ndjson
from mtm_replay.data.schemas import SchemaValidationError
from mtm_replay.orchestration.report_pipeline import (
    BacktestReport,
    price_request_window,
    run_report,
)
from mtm_replay.utils.logging_setup import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv=None):
    """
    Parse command line arguments.

    Args:
        argv: Argument list (sys.argv[1:] when None).

    Returns:
        Namespace with ledger, prices, symbol, platform, output_dir,
        from_date, to_date, log_level, logs_dir.
    """
    parser = argparse.ArgumentParser(
        description="Replay an MT4/MT5 backtest ledger and value it bar by bar",
        epilog="""
Examples:
  # Ledger metrics only (no price data)
  python actions/run_report_replay.py --ledger ledger.csv --symbol EURUSD

  # Full mark-to-market replay, restricted to January
  python actions/run_report_replay.py --ledger ledger.csv --prices eurusd.ndjson \\
      --symbol EURUSD --from-date 2024-01-01 --to-date 2024-01-31
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--ledger", required=True, help="Scraped ledger CSV (time,type,price,...)")
    parser.add_argument(
        "--prices",
        default=None,
        help="Price feed as newline-delimited JSON (omit for ledger-only metrics)",
    )
    parser.add_argument("--symbol", default=None, help="Report symbol cell, e.g. 'EURUSD,M15'")
    parser.add_argument("--platform", default="MT4", help="Strategy tester: MT4 or MT5 (default: MT4)")
    parser.add_argument(
        "--initial-deposit",
        type=float,
        default=None,
        help="Initial deposit stated by the report (default: configured starting balance)",
    )
    parser.add_argument(
        "--output-dir",
        default="data/results",
        help="Output directory (default: data/results/)",
    )
    parser.add_argument("--from-date", default=None, help="Keep valuations from this date (YYYY-MM-DD)")
    parser.add_argument("--to-date", default=None, help="Keep valuations up to this date (YYYY-MM-DD)")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--logs-dir", default=None, help="Also write a rotating log file here")

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Run the replay workflow and return the process exit code.

    **Error handling**: input problems (missing files, bad columns, empty
    ledger, unsupported platform, malformed MTM_* settings) are reported on
    stderr and return 1.
    Anything else propagates with its stack trace.
    """
    args = parse_args(argv)
    setup_logging(args.log_level, logs_dir=args.logs_dir)

    try:
        settings = get_settings()
        parsed = read_ledger_csv(args.ledger, default_lots=settings.default_lots)
        report = BacktestReport(
            symbol=args.symbol,
            platform=args.platform,
            trades=parsed.trades,
            initial_deposit=args.initial_deposit,
        )

        bars = None
        if args.prices:
            feed = read_price_ndjson(args.prices, default_conversion_fx=settings.default_conversion_fx)
            bars = feed.bars
        elif report.trades:
            request = price_request_window(report.trades, report.symbol, settings.price_timeframe)
            logger.info(
                "No price feed given; a replay would need %s %s bars from %s to %s",
                request.symbol,
                request.timeframe,
                request.from_date,
                request.to_date,
            )

        result = run_report(report, bars=bars, settings=settings)
    except (FileNotFoundError, SchemaValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output_dir = Path(args.output_dir)
    stem = report.symbol.lower()

    write_trades_csv(report.trades, output_dir / f"{stem}_trades.csv")
    write_metrics_json(result.metrics, output_dir / f"{stem}_metrics.json")

    print("=" * 60)
    print(f"{report.symbol} ({report.platform}) backtest replay")
    print("=" * 60)
    print(f"  Trades:        {result.metrics.total_trades} ({len(parsed.skipped)} rows skipped)")
    print(f"  Closed trades: {result.metrics.closed_trades}")
    print(f"  Win rate:      {result.metrics.win_rate_pct:.2f}%")
    print(f"  Total P&L:     {result.metrics.total_pnl:.2f}")
    print(f"  Max drawdown:  {result.metrics.max_drawdown_pct:.2f}%")
    print(f"  Profit factor: {result.metrics.profit_factor:.2f}")

    if result.ledger_only:
        print("  Valuations:    skipped (no price data)")
    else:
        records = filter_valuations(result.valuations.records, args.from_date, args.to_date)
        write_valuations_csv(records, output_dir / f"{stem}_valuations.csv")
        print(f"  Valuations:    {len(records)} bars written")
        if result.valuations.unapplied_trades:
            print(
                f"  Warning:       {len(result.valuations.unapplied_trades)} trade(s) "
                f"after the last bar were not valued"
            )

    print(f"\nResults saved to {output_dir}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
