"""
Selections over trades and valuations for display and export.

These helpers back the report viewer: the trade table filter, the date-range
control on the valuation chart, and the "backtest" line of closed-trade
points drawn beside the mark-to-market curve. They never mutate their
inputs.
"""

from datetime import date, datetime
from typing import Iterable, List, Optional, Union

import pandas as pd

from mtm_replay.backtesting.replay_engine import ValuationRecord
from mtm_replay.ledger.trades import TYPE_LABELS, Trade
from mtm_replay.utils.time import parse_timestamp

SELECTION_ALL = "ALL"
SELECTION_CLOSED = "CLOSED"

TRADE_SELECTIONS = [SELECTION_ALL, SELECTION_CLOSED] + list(TYPE_LABELS.values())

CLOSED_POINT_COLUMNS = ['timestamp', 'price', 'realized_pnl', 'close_reason']

DateLike = Union[str, date, datetime, pd.Timestamp]


def filter_trades(trades: Iterable[Trade], selection: str = SELECTION_ALL) -> List[Trade]:
    """
    Select trades by category.

    Args:
        trades: Trades in any order (order is preserved).
        selection: "ALL", "CLOSED" (T/P and S/L), or one normalized type
                   label ("BUY", "SELL", "T/P", "S/L"). Case-insensitive.

    Returns:
        The matching trades.

    Raises:
        ValueError: If selection is not one of TRADE_SELECTIONS.
    """
    key = str(selection).strip().upper()
    if key not in TRADE_SELECTIONS:
        raise ValueError(
            f"Unknown trade selection: {selection!r}. Choose one of {TRADE_SELECTIONS}."
        )

    if key == SELECTION_ALL:
        return list(trades)
    if key == SELECTION_CLOSED:
        return [t for t in trades if t.is_close]
    return [t for t in trades if t.type_label == key]


def _bound(value: Optional[DateLike], end_of_day: bool) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    ts = parse_timestamp(value)
    # A bare date as the upper bound covers the whole day
    if end_of_day and _is_bare_date(value):
        ts = ts + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)
    return ts


def _is_bare_date(value: DateLike) -> bool:
    if isinstance(value, (datetime, pd.Timestamp)):
        return False
    if isinstance(value, date):
        return True
    return len(str(value).strip()) <= 10


def filter_valuations(
    records: Iterable[ValuationRecord],
    start: Optional[DateLike] = None,
    end: Optional[DateLike] = None,
) -> List[ValuationRecord]:
    """
    Keep valuation records whose timestamp lies inside [start, end].

    Both bounds are inclusive and optional. A bound given as a plain date
    (e.g. "2024-01-31" or datetime.date) is read as the whole day, so an end
    of "2024-01-31" keeps the bars of January 31st.

    Args:
        records: Valuation records.
        start: Earliest timestamp to keep (None for no lower bound).
        end: Latest timestamp to keep (None for no upper bound).

    Returns:
        Matching records in input order.

    Raises:
        ValueError: If a bound cannot be parsed or start is after end.
    """
    lower = _bound(start, end_of_day=False)
    upper = _bound(end, end_of_day=True)

    if lower is not None and upper is not None and lower > upper:
        raise ValueError(f"start ({lower}) is after end ({upper})")

    selected = []
    for record in records:
        if lower is not None and record.timestamp < lower:
            continue
        if upper is not None and record.timestamp > upper:
            continue
        selected.append(record)
    return selected


def closed_trade_points(trades: Iterable[Trade]) -> pd.DataFrame:
    """
    Closed trades as chart points, one per timestamp.

    Closes are sorted by time (ledger order on ties); when several closes
    share a timestamp only the first is kept, since a chart axis cannot hold
    two points at one instant.

    Args:
        trades: Trade ledger.

    Returns:
        DataFrame with CLOSED_POINT_COLUMNS, ascending by timestamp.
    """
    closes = sorted((t for t in trades if t.is_close), key=lambda t: (t.timestamp, t.sequence))

    rows = []
    seen = set()
    for trade in closes:
        if trade.timestamp in seen:
            continue
        seen.add(trade.timestamp)
        rows.append(
            {
                'timestamp': trade.timestamp,
                'price': trade.price,
                'realized_pnl': trade.realized_pnl,
                'close_reason': trade.type_label,
            }
        )
    return pd.DataFrame(rows, columns=CLOSED_POINT_COLUMNS)
