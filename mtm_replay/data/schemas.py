"""
Data contracts for price bars, ledger CSVs, and valuation outputs.

**Conceptual**: This module defines the "data contracts" at the system's
boundaries: what a price bar must contain, which columns a ledger CSV must
have, and the column order of every table we write. Validation raises
SchemaValidationError with the source and the specific problem.

**Schema philosophy**:
  - Price bars and valuation records are sorted ascending by timestamp
    (oldest first), the order the replay walks them.
  - Column names are snake_case.
  - Timestamps are timezone-naive UTC in memory and "YYYY-MM-DD HH:MM:SS"
    on disk.
"""

from dataclasses import dataclass
from typing import Optional

import pandas as pd


class SchemaValidationError(Exception):
    """
    Raised when an input or output table does not conform to its schema.

    Messages include the context (file path or source name) and the
    specific issue so callers can log or display them directly.
    """
    pass


# Fields every price-feed line must carry (conversionFx and symbol are optional)
PRICE_FEED_REQUIRED_FIELDS = ['time', 'open', 'high', 'low', 'close', 'volume']

# Columns of the in-memory price frame
PRICE_BAR_COLUMNS = [
    'timestamp',
    'open',
    'high',
    'low',
    'close',
    'volume',
    'conversion_fx',
    'symbol',
]

# Minimal columns a ledger CSV must have; the rest are optional
LEDGER_REQUIRED_COLUMNS = ['time', 'type', 'price']

# Column order for the normalized trade ledger export
TRADE_COLUMNS = [
    'timestamp',
    'type',
    'raw_type',
    'lots',
    'price',
    'realized_pnl',
    'take_profit',
    'stop_loss',
    'balance',
]

# Column order for the valuation export
VALUATION_COLUMNS = [
    'timestamp',
    'position',
    'closed_pnl',
    'average_entry_price',
    'bar_close_price',
    'conversion_fx',
    'floating_pnl',
    'total_pnl',
]


@dataclass(frozen=True)
class PriceBar:
    """
    One OHLC observation of the traded instrument.

    Attributes:
        timestamp: Bar time (timezone-naive UTC).
        open: Opening price.
        high: High price.
        low: Low price.
        close: Closing price; the mark used for floating P&L.
        volume: Traded volume (informational).
        conversion_fx: Factor converting P&L in quote currency into the
                      account currency. Must be positive. Callers that have
                      no value use the configured default conversion factor.
        symbol: Instrument tag from the price feed, if present.
    """
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float
    conversion_fx: float
    symbol: Optional[str] = None

    def __post_init__(self):
        if not self.conversion_fx > 0:
            raise ValueError(f"conversion_fx must be positive, got {self.conversion_fx}")


def validate_ledger_frame(
    df: pd.DataFrame,
    context: str | None = None,
) -> None:
    """
    Validate that a ledger table carries the minimal columns.

    Individual rows are not checked here; malformed rows are dropped one by
    one during normalization.

    Args:
        df: Ledger DataFrame (one row per scraped report row).
        context: Optional source description for error messages.

    Raises:
        SchemaValidationError: If required columns are missing.
    """
    ctx = f"{context}: " if context else ""

    missing_cols = set(LEDGER_REQUIRED_COLUMNS) - set(df.columns)
    if missing_cols:
        raise SchemaValidationError(
            f"{ctx}Missing required columns: {sorted(missing_cols)}. "
            f"Expected at minimum: {LEDGER_REQUIRED_COLUMNS}. "
            f"Found columns: {list(df.columns)}."
        )


def validate_ascending_timestamps(
    df: pd.DataFrame,
    context: str | None = None,
) -> None:
    """
    Check that a table's timestamp column is sorted ascending (ties allowed).

    Args:
        df: DataFrame with a datetime 'timestamp' column.
        context: Optional source description for error messages.

    Raises:
        SchemaValidationError: If the column is missing or out of order.
    """
    ctx = f"{context}: " if context else ""

    if 'timestamp' not in df.columns:
        raise SchemaValidationError(f"{ctx}'timestamp' column missing.")

    if len(df) > 1:
        diffs = df['timestamp'].diff().iloc[1:]
        if (diffs < pd.Timedelta(0)).any():
            bad_indices = diffs[diffs < pd.Timedelta(0)].index.tolist()
            raise SchemaValidationError(
                f"{ctx}Timestamps are not in ascending order. "
                f"Violations found at row indices: {bad_indices[:5]} (showing first 5)."
            )
