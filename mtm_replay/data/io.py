"""
CSV and JSON readers and writers for ledgers, valuations, and metrics.

**Conceptual**: This module is the file I/O boundary of the project. The
ledger enters here and every result leaves here, so the on-disk conventions
live in one place:
  - Timestamps on disk are "YYYY-MM-DD HH:MM:SS" (space, not 'T').
  - Rows are ascending by timestamp (oldest first), the order the replay
    produces them.
  - Column order follows the lists in schemas.py.
  - Parent directories are created on write; write failures surface as
    OSError naming the path.

**Rule**: Actions and orchestration code never call pd.read_csv or
df.to_csv directly; they go through these functions.
"""

import json
from pathlib import Path
from typing import Iterable

import pandas as pd

from mtm_replay.analytics.trade_metrics import TradeMetrics
from mtm_replay.backtesting.replay_engine import ValuationRecord, valuations_to_frame
from mtm_replay.config.settings import DEFAULT_LOTS
from mtm_replay.data.schemas import (
    TRADE_COLUMNS,
    VALUATION_COLUMNS,
    SchemaValidationError,
    validate_ascending_timestamps,
    validate_ledger_frame,
)
from mtm_replay.ledger.trades import LedgerParseResult, Trade, normalize_ledger_rows

CSV_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

# Display precision of the valuation table
POSITION_DECIMALS = 2
PNL_DECIMALS = 2
PRICE_DECIMALS = 3


def read_ledger_csv(
    path: Path | str,
    default_lots: float = DEFAULT_LOTS,
) -> LedgerParseResult:
    """
    Read a scraped report ledger from CSV and normalize its rows.

    **Functionally**:
      - Every cell is read as text, exactly as the scraper wrote it, so
        formatted numbers ("1 234.50") reach the normalizer intact.
      - The minimal columns (time, type, price) are checked up front.
      - Rows are then normalized one by one; malformed rows are skipped and
        returned in LedgerParseResult.skipped instead of failing the read.

    Args:
        path: Path to the ledger CSV.
        default_lots: Lot size for rows without a size column.

    Returns:
        LedgerParseResult with trades in file order plus skipped rows.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        SchemaValidationError: If the file can't be parsed as CSV or lacks
                              the required columns.
    """
    path = Path(path)
    context = str(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Ledger CSV not found: {path}. "
            f"Ensure the file exists and the path is correct."
        )

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        df = pd.DataFrame(columns=['time', 'type', 'price'])
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise SchemaValidationError(f"{context}: Failed to read CSV. Error: {e}")

    df.columns = [str(c).strip() for c in df.columns]
    validate_ledger_frame(df, context=context)

    return normalize_ledger_rows(df.to_dict(orient='records'), default_lots=default_lots)


def trades_to_frame(trades: Iterable[Trade]) -> pd.DataFrame:
    """
    Convert trades into a DataFrame with TRADE_COLUMNS.

    Args:
        trades: Trades (order is preserved).

    Returns:
        DataFrame, one row per trade. `type` holds the normalized label.
    """
    rows = [
        {
            'timestamp': t.timestamp,
            'type': t.type_label,
            'raw_type': t.raw_type,
            'lots': t.lots,
            'price': t.price,
            'realized_pnl': t.realized_pnl,
            'take_profit': t.take_profit,
            'stop_loss': t.stop_loss,
            'balance': t.balance,
        }
        for t in trades
    ]
    return pd.DataFrame(rows, columns=TRADE_COLUMNS)


def _format_timestamps(df: pd.DataFrame) -> pd.DataFrame:
    if not df.empty:
        df['timestamp'] = pd.to_datetime(df['timestamp']).dt.strftime(CSV_TIMESTAMP_FORMAT)
    return df


def _write_csv(df: pd.DataFrame, path: Path, columns: list) -> None:
    try:
        df.to_csv(path, index=False, columns=columns)
    except OSError as e:
        raise OSError(f"{path}: Failed to write CSV. Error: {e}")


def write_trades_csv(trades: Iterable[Trade], path: Path | str) -> None:
    """
    Write the normalized ledger to CSV, in replay order.

    Args:
        trades: Trades to export (sorted here by timestamp, then ledger order).
        path: Destination path.

    Raises:
        OSError: If the file can't be written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    ordered = sorted(trades, key=lambda t: (t.timestamp, t.sequence))
    df_to_write = _format_timestamps(trades_to_frame(ordered))
    _write_csv(df_to_write, path, TRADE_COLUMNS)


def write_valuations_csv(
    records: Iterable[ValuationRecord],
    path: Path | str,
    round_output: bool = True,
) -> None:
    """
    Write per-bar valuation records to CSV.

    **Rounding** (round_output=True, the report viewer's precision):
      - position: 2 decimals.
      - closed, floating and total P&L: 2 decimals.
      - average_entry_price: 3 decimals.
    Bar close and conversion factor are written unrounded.

    Args:
        records: Valuation records (ascending order is checked).
        path: Destination path.
        round_output: Apply display rounding before writing.

    Raises:
        SchemaValidationError: If the records are not in ascending time order.
        OSError: If the file can't be written.
    """
    path = Path(path)
    context = str(path)

    df_to_write = valuations_to_frame(records)
    validate_ascending_timestamps(df_to_write, context=context)

    if round_output and not df_to_write.empty:
        df_to_write = df_to_write.round(
            {
                'position': POSITION_DECIMALS,
                'closed_pnl': PNL_DECIMALS,
                'floating_pnl': PNL_DECIMALS,
                'total_pnl': PNL_DECIMALS,
                'average_entry_price': PRICE_DECIMALS,
            }
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    df_to_write = _format_timestamps(df_to_write)
    _write_csv(df_to_write, path, VALUATION_COLUMNS)


def read_valuations_csv(path: Path | str) -> pd.DataFrame:
    """
    Read a valuation CSV written by write_valuations_csv.

    Args:
        path: Path to the valuation CSV.

    Returns:
        DataFrame with VALUATION_COLUMNS and datetime64 timestamps.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        SchemaValidationError: If columns are missing or timestamps unordered.
    """
    path = Path(path)
    context = str(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Valuation CSV not found: {path}. "
            f"Ensure the file exists and the path is correct."
        )

    df = pd.read_csv(path)

    missing = set(VALUATION_COLUMNS) - set(df.columns)
    if missing:
        raise SchemaValidationError(f"{context}: Missing required columns: {sorted(missing)}.")

    df['timestamp'] = pd.to_datetime(df['timestamp'], format=CSV_TIMESTAMP_FORMAT)
    validate_ascending_timestamps(df, context=context)
    return df


def write_metrics_json(metrics: TradeMetrics, path: Path | str) -> None:
    """
    Write ledger metrics as a JSON object.

    Args:
        metrics: Computed TradeMetrics.
        path: Destination path.

    Raises:
        OSError: If the file can't be written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with path.open('w', encoding='utf-8') as handle:
            json.dump(metrics.to_dict(), handle, indent=2)
    except OSError as e:
        raise OSError(f"{path}: Failed to write metrics JSON. Error: {e}")
