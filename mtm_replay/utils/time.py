"""
Timestamp parsing for report rows and price bars.

Strategy-tester reports write times as "2024.01.02 09:00" (MetaTrader's dot
format), while the price feed uses ISO 8601 strings. Both must land on the
same clock before the replay engine can compare them, so every timestamp
entering the system goes through parse_timestamp.

**Canonical in-memory format**:
  - pd.Timestamp, timezone-naive, UTC.
  - Timezone-aware inputs are converted to UTC and then made naive.
  - Naive inputs are treated as UTC (no conversion).
"""

import math
from datetime import datetime

import pandas as pd


# MetaTrader report formats, tried before the generic ISO parser
REPORT_TIMESTAMP_FORMATS = [
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d %H:%M",
    "%Y.%m.%d",
]


def to_naive_utc(ts: pd.Timestamp) -> pd.Timestamp:
    """
    Convert a timestamp to the canonical timezone-naive UTC form.

    Args:
        ts: Any pandas Timestamp (aware or naive).

    Returns:
        Naive Timestamp expressed in UTC.
    """
    if ts.tzinfo is not None:
        return ts.tz_convert("UTC").tz_localize(None)
    return ts


def parse_timestamp(value) -> pd.Timestamp:
    """
    Parse a report or price-feed timestamp into canonical form.

    **Functionally**:
      - pd.Timestamp / datetime inputs are normalized directly.
      - Strings are tried against the MetaTrader formats first, then parsed
        as ISO 8601 (with or without 'T', with or without offset).
      - Epoch milliseconds (int/float) are accepted, matching what the
        browser-side price feed produces.

    Args:
        value: Timestamp string, datetime, pd.Timestamp, or epoch milliseconds.

    Returns:
        Timezone-naive pd.Timestamp in UTC.

    Raises:
        ValueError: If the value is empty or cannot be parsed.

    Example:
        >>> parse_timestamp("2024.01.02 09:05")
        Timestamp('2024-01-02 09:05:00')
        >>> parse_timestamp("2024-01-02T09:05:00+01:00")
        Timestamp('2024-01-02 08:05:00')
    """
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            raise ValueError("Timestamp is NaT.")
        return to_naive_utc(value)

    if isinstance(value, datetime):
        return to_naive_utc(pd.Timestamp(value))

    if isinstance(value, bool):
        raise ValueError(f"Could not parse timestamp: {value!r}")

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Epoch timestamp is not finite: {value!r}")
        try:
            epoch = pd.Timestamp(int(value), unit="ms", tz="UTC")
        except (OverflowError, ValueError) as e:
            raise ValueError(f"Epoch timestamp out of range: {value!r}. Error: {e}")
        return to_naive_utc(epoch)

    if value is None:
        raise ValueError("Timestamp is missing.")

    text = str(value).strip()
    if not text:
        raise ValueError("Timestamp is empty.")

    for fmt in REPORT_TIMESTAMP_FORMATS:
        try:
            return pd.Timestamp(datetime.strptime(text, fmt))
        except ValueError:
            continue

    try:
        parsed = pd.Timestamp(text)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Could not parse timestamp: {text!r}. Error: {e}")

    if pd.isna(parsed):
        raise ValueError(f"Could not parse timestamp: {text!r}")

    return to_naive_utc(parsed)
