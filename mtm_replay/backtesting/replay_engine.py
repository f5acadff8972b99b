"""
Bar-by-bar replay of a trade ledger against a price series.

**Conceptual**: The replay engine is the orchestrator that brings together
the trade ledger, the price series, and the position model. It walks the
bars in time order and, before valuing each bar, applies every trade whose
timestamp is at or before that bar. The output is one ValuationRecord per
bar: the mark-to-market view of the backtest that the report itself never
shows.

**Two cursors**:
  - A cursor into the time-sorted ledger. It only moves forward; every
    trade is applied at most once.
  - The bar iteration, ascending and read-only.

**Reproducibility**: The engine builds a fresh PositionModel on every call
and never mutates its inputs, so the same ledger and bars always produce the
same records.

**Trades after the last bar**: They are never applied (there is no bar to
value them on). They are returned in ReplayResult.unapplied_trades and
logged, rather than disappearing silently.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import pandas as pd

from mtm_replay.backtesting.position_model import ClosePolicy, PositionModel
from mtm_replay.config.settings import ReplaySettings, get_settings
from mtm_replay.data.schemas import VALUATION_COLUMNS, PriceBar
from mtm_replay.ledger.trades import Trade, sort_ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValuationRecord:
    """
    Mark-to-market snapshot at one price bar.

    Attributes:
        timestamp: Bar time.
        position: Net lots after every trade up to and including this bar.
        closed_pnl: Cumulative realized P&L up to and including this bar.
        average_entry_price: AEP of the open lots (0.0 when flat).
        bar_close_price: The bar's close.
        conversion_fx: The bar's conversion factor.
        floating_pnl: Unrealized P&L at the bar close (0.0 when flat).
        total_pnl: floating_pnl + closed_pnl.
    """
    timestamp: pd.Timestamp
    position: float
    closed_pnl: float
    average_entry_price: float
    bar_close_price: float
    conversion_fx: float
    floating_pnl: float
    total_pnl: float


@dataclass
class ReplayResult:
    """
    Output of a replay run.

    Attributes:
        records: One ValuationRecord per bar, ascending by timestamp.
        unapplied_trades: Ledger trades later than the last bar (never applied).
        final_position: Net position after the last bar.
        final_closed_pnl: Realized P&L after the last bar.
    """
    records: List[ValuationRecord] = field(default_factory=list)
    unapplied_trades: List[Trade] = field(default_factory=list)
    final_position: float = 0.0
    final_closed_pnl: float = 0.0

    def to_frame(self) -> pd.DataFrame:
        """Valuation records as a DataFrame in VALUATION_COLUMNS order."""
        return valuations_to_frame(self.records)


def valuations_to_frame(records: Iterable[ValuationRecord]) -> pd.DataFrame:
    """
    Convert valuation records into a DataFrame (one row per bar).

    Args:
        records: ValuationRecord objects.

    Returns:
        DataFrame with VALUATION_COLUMNS, in record order.
    """
    rows = [
        {
            'timestamp': r.timestamp,
            'position': r.position,
            'closed_pnl': r.closed_pnl,
            'average_entry_price': r.average_entry_price,
            'bar_close_price': r.bar_close_price,
            'conversion_fx': r.conversion_fx,
            'floating_pnl': r.floating_pnl,
            'total_pnl': r.total_pnl,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=VALUATION_COLUMNS)


def replay(
    trades: Iterable[Trade],
    bars: Iterable[PriceBar],
    settings: Optional[ReplaySettings] = None,
    close_policy: Optional[ClosePolicy] = None,
) -> ReplayResult:
    """
    Replay a trade ledger against price bars.

    **Algorithm**, for each bar in ascending timestamp order:
      1. While the next ledger trade has timestamp <= bar.timestamp, apply it
         to the position model (opens add a lot, closes consume one).
      2. Compute AEP and floating P&L at bar.close / bar.conversion_fx.
      3. Emit a ValuationRecord with the model's net position and closed P&L.

    Trades sharing a timestamp are applied in ledger order (stable sort).

    Args:
        trades: Trade ledger in any order; sorted here by (timestamp, sequence).
        bars: Price bars in any order; sorted here ascending (stable).
        settings: Valuation constants (get_settings() when None).
        close_policy: Lot selection for closes (FIFO single lot by default).

    Returns:
        ReplayResult with one record per bar and the trades left unapplied.
        With no bars, records is empty and every trade is unapplied.
    """
    settings = settings or get_settings()

    ledger = sort_ledger(trades)
    ordered_bars = sorted(bars, key=lambda b: b.timestamp)

    model = PositionModel(
        lot_notional=settings.lot_notional,
        tolerance=settings.position_tolerance,
        close_policy=close_policy,
    )

    records: List[ValuationRecord] = []
    cursor = 0

    for bar in ordered_bars:
        # Step 1: apply every trade at or before this bar
        while cursor < len(ledger) and ledger[cursor].timestamp <= bar.timestamp:
            model.apply(ledger[cursor])
            cursor += 1

        # Step 2: value the (possibly just-updated) position at this bar
        aep = model.average_entry_price()
        floating = model.floating_pnl(bar.close, bar.conversion_fx)
        closed = model.closed_pnl

        # Step 3: emit
        records.append(
            ValuationRecord(
                timestamp=bar.timestamp,
                position=model.net_position,
                closed_pnl=closed,
                average_entry_price=aep,
                bar_close_price=bar.close,
                conversion_fx=bar.conversion_fx,
                floating_pnl=floating,
                total_pnl=floating + closed,
            )
        )

    unapplied = ledger[cursor:]
    if unapplied:
        last_bar = ordered_bars[-1].timestamp if ordered_bars else None
        logger.warning(
            "%d trade(s) after the last price bar (%s) were not applied; first at %s",
            len(unapplied),
            last_bar,
            unapplied[0].timestamp,
        )

    logger.info(
        "Replayed %d trades over %d bars (final position %.2f, closed P&L %.2f)",
        cursor,
        len(records),
        model.net_position,
        model.closed_pnl,
    )

    return ReplayResult(
        records=records,
        unapplied_trades=list(unapplied),
        final_position=model.net_position,
        final_closed_pnl=model.closed_pnl,
    )
