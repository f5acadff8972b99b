"""
Parser for the newline-delimited JSON price feed.

**Conceptual**: The market-data collaborator answers with one JSON object per
line, one line per bar:

    {"time": "2024-01-02 09:00:00", "open": "1.1000", "high": "1.1010",
     "low": "1.0990", "close": "1.1005", "volume": "120",
     "conversionFx": "130.9", "symbol": "EURUSD"}

Numeric fields arrive as strings. `conversionFx` is optional and falls back
to the configured default conversion factor when absent or empty.

**Robustness**:
  - Each line is parsed on its own. A malformed line (bad JSON, missing
    field, non-numeric value, non-positive conversion factor) is skipped and
    reported; it never aborts the series.
  - Blank lines are ignored silently.
  - The result is sorted ascending by time. Lines that repeat an earlier
    timestamp are dropped (first occurrence wins).
"""

import json
import math
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd

from mtm_replay.config.settings import DEFAULT_CONVERSION_FX
from mtm_replay.data.schemas import PRICE_BAR_COLUMNS, PRICE_FEED_REQUIRED_FIELDS, PriceBar
from mtm_replay.ledger.trades import SkippedRecord
from mtm_replay.utils.time import parse_timestamp

logger = logging.getLogger(__name__)


class PriceLineError(ValueError):
    """Raised when a single price-feed record cannot be turned into a PriceBar."""
    pass


@dataclass
class PriceFeedResult:
    """Bars recovered from a price feed plus the lines that were dropped."""
    bars: List[PriceBar] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)


def _numeric(item: Mapping[str, Any], name: str) -> float:
    value = item.get(name)
    if value is None or (isinstance(value, str) and value.strip() == ""):
        raise PriceLineError(f"Missing field '{name}'.")
    if isinstance(value, bool):
        raise PriceLineError(f"Field '{name}' is not numeric: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise PriceLineError(f"Field '{name}' is not numeric: {value!r}")
    if not math.isfinite(number):
        raise PriceLineError(f"Field '{name}' is not a finite number: {value!r}")
    return number


def parse_price_record(
    item: Mapping[str, Any],
    default_conversion_fx: float = DEFAULT_CONVERSION_FX,
) -> PriceBar:
    """
    Build a PriceBar from one decoded price-feed object.

    Args:
        item: Decoded JSON object for one bar.
        default_conversion_fx: Conversion factor used when the record has
                              no (or an empty) `conversionFx`.

    Returns:
        PriceBar for this record.

    Raises:
        PriceLineError: If a required field is missing or malformed, or the
                       conversion factor is not positive.
    """
    if not isinstance(item, Mapping):
        raise PriceLineError(f"Expected a JSON object, got {type(item).__name__}.")

    missing = [name for name in PRICE_FEED_REQUIRED_FIELDS if name not in item]
    if missing:
        raise PriceLineError(f"Missing fields: {missing}")

    try:
        timestamp = parse_timestamp(item['time'])
    except ValueError as e:
        raise PriceLineError(f"Bad bar time: {e}")

    raw_fx = item.get('conversionFx')
    if raw_fx is None or (isinstance(raw_fx, str) and raw_fx.strip() == ""):
        conversion_fx = default_conversion_fx
    else:
        conversion_fx = _numeric(item, 'conversionFx')
        if conversion_fx <= 0:
            raise PriceLineError(f"conversionFx must be positive, got {raw_fx!r}")

    symbol = item.get('symbol')

    return PriceBar(
        timestamp=timestamp,
        open=_numeric(item, 'open'),
        high=_numeric(item, 'high'),
        low=_numeric(item, 'low'),
        close=_numeric(item, 'close'),
        volume=_numeric(item, 'volume'),
        conversion_fx=conversion_fx,
        symbol=str(symbol) if symbol is not None else None,
    )


def parse_price_lines(
    lines: Iterable[str | bytes],
    default_conversion_fx: float = DEFAULT_CONVERSION_FX,
) -> PriceFeedResult:
    """
    Parse price-feed lines one at a time, dropping the malformed ones.

    Args:
        lines: Raw lines (one JSON object each). Byte lines are decoded as
              UTF-8 one at a time, so an undecodable line is skipped alone.
        default_conversion_fx: Fallback conversion factor for bars without one.

    Returns:
        PriceFeedResult with bars sorted ascending (unique timestamps) and
        the skipped lines (1-based line numbers).
    """
    result = PriceFeedResult()
    parsed: List[PriceBar] = []

    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            text = line.decode("utf-8") if isinstance(line, bytes) else line
            item = json.loads(text)
            bar = parse_price_record(item, default_conversion_fx=default_conversion_fx)
        except (UnicodeDecodeError, json.JSONDecodeError, PriceLineError) as e:
            logger.warning("Skipping price line %d: %s", line_number, e)
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")
            result.skipped.append(
                SkippedRecord(index=line_number, record=line.rstrip("\r\n"), reason=str(e))
            )
            continue
        parsed.append(bar)

    seen = set()
    for bar in sorted(parsed, key=lambda b: b.timestamp):
        if bar.timestamp in seen:
            logger.warning("Dropping duplicate price bar at %s", bar.timestamp)
            continue
        seen.add(bar.timestamp)
        result.bars.append(bar)

    logger.info(
        "Parsed %d price bars (%d lines skipped)", len(result.bars), len(result.skipped)
    )
    return result


def parse_price_ndjson(
    text: str,
    default_conversion_fx: float = DEFAULT_CONVERSION_FX,
) -> PriceFeedResult:
    """
    Parse a complete newline-delimited JSON response body.

    Args:
        text: Response body, one JSON object per line.
        default_conversion_fx: Fallback conversion factor for bars without one.

    Returns:
        PriceFeedResult (see parse_price_lines).
    """
    return parse_price_lines(text.splitlines(), default_conversion_fx=default_conversion_fx)


def read_price_ndjson(
    path: Path | str,
    default_conversion_fx: float = DEFAULT_CONVERSION_FX,
) -> PriceFeedResult:
    """
    Read a saved price-feed file.

    Args:
        path: Path to a newline-delimited JSON file.
        default_conversion_fx: Fallback conversion factor for bars without one.

    Returns:
        PriceFeedResult (see parse_price_lines).

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Price feed not found: {path}. "
            f"Ensure the file exists and the path is correct."
        )

    with path.open("rb") as handle:
        return parse_price_lines(handle, default_conversion_fx=default_conversion_fx)


def bars_to_frame(bars: Iterable[PriceBar]) -> pd.DataFrame:
    """
    Convert price bars into a DataFrame (one row per bar, input order).

    Args:
        bars: PriceBar objects.

    Returns:
        DataFrame with PRICE_BAR_COLUMNS.
    """
    rows = [
        {
            'timestamp': bar.timestamp,
            'open': bar.open,
            'high': bar.high,
            'low': bar.low,
            'close': bar.close,
            'volume': bar.volume,
            'conversion_fx': bar.conversion_fx,
            'symbol': bar.symbol,
        }
        for bar in bars
    ]
    return pd.DataFrame(rows, columns=PRICE_BAR_COLUMNS)


def frame_to_bars(
    df: pd.DataFrame,
    default_conversion_fx: Optional[float] = None,
) -> List[PriceBar]:
    """
    Convert a price DataFrame back into PriceBar objects.

    Missing or NaN `conversion_fx` values take `default_conversion_fx`
    (DEFAULT_CONVERSION_FX when not given).

    Args:
        df: DataFrame with at least timestamp, open, high, low, close, volume.
        default_conversion_fx: Fallback conversion factor.

    Returns:
        List of PriceBar in row order.
    """
    fallback = DEFAULT_CONVERSION_FX if default_conversion_fx is None else default_conversion_fx
    bars = []
    for row in df.to_dict(orient='records'):
        fx = row.get('conversion_fx')
        symbol = row.get('symbol')
        bars.append(
            PriceBar(
                timestamp=parse_timestamp(row['timestamp']),
                open=float(row['open']),
                high=float(row['high']),
                low=float(row['low']),
                close=float(row['close']),
                volume=float(row['volume']),
                conversion_fx=fallback if fx is None or pd.isna(fx) else float(fx),
                symbol=None if symbol is None or pd.isna(symbol) else str(symbol),
            )
        )
    return bars
