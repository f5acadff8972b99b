"""
Open-position model used by the replay engine.

**Conceptual**: The position model is the ledger-side counterpart of a
broker account. It keeps the lots that are currently open, the signed net
position, and the running sum of realized P&L. The replay engine feeds it
trades in time order and asks it, once per price bar, for the average entry
price (AEP) and the floating (unrealized) P&L at that bar's close.

**Financial assumptions** (document clearly, they shape every number):
  - Lot sizes are signed: long lots positive, short lots negative.
  - AEP is the signed-lot-weighted mean of open entry prices, so a mix of
    long and short lots blends rather than averaging absolute sizes.
  - Floating P&L = (bar_close - AEP) * net_position * lot_notional / conversion_fx.
  - Realized P&L is taken from the report as-is (the model never recomputes it).
  - Positions whose magnitude is inside the tolerance band count as flat.

**Close matching** (FifoSingleLotClose): a closing trade consumes the single
oldest open lot, whatever its size or side, and removes it entirely. The net
position moves by the closing trade's own size in the direction of that lot.
Partial closes (one close consuming part of a lot, or spanning several lots)
are NOT modeled: when a close's size differs from the consumed lot's size,
net_position and the sum of remaining lots diverge.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

import pandas as pd

from mtm_replay.config.settings import LOT_NOTIONAL, POSITION_TOLERANCE
from mtm_replay.ledger.trades import Direction, Trade, TradeKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenLot:
    """
    A lot created by an Open trade and not yet consumed by a Close.

    Attributes:
        lot_id: Strictly increasing key; lower ids are older lots.
        signed_lots: Size in lots, positive for long, negative for short.
        entry_price: Execution price of the opening trade.
        opened_at: Timestamp of the opening trade.
    """
    lot_id: int
    signed_lots: float
    entry_price: float
    opened_at: pd.Timestamp


class ClosePolicy(Protocol):
    """
    Protocol for choosing which open lot a closing trade consumes.

    Implementations return the id of the lot to remove, or None when there
    is nothing to close (orphan close).
    """

    def select_lot(self, open_lots: Dict[int, OpenLot], trade: Trade) -> Optional[int]:
        ...


class FifoSingleLotClose:
    """
    Close policy: every close consumes exactly one lot, the oldest one.

    Lot size and direction of the closing trade are not matched against the
    lot. This reproduces how the strategy-tester replay has always valued
    positions; see the module docstring for the limitation.
    """

    def select_lot(self, open_lots: Dict[int, OpenLot], trade: Trade) -> Optional[int]:
        # dicts iterate in insertion order, so the first key is the oldest lot
        return next(iter(open_lots), None)


class PositionModel:
    """
    Mutable open-position state for a single replay run.

    **Conceptual**: One PositionModel is created per replay and owned by the
    replay loop; nothing else holds a reference to it. Re-running a replay
    therefore always starts from a flat, empty model.

    **Invariants**:
      - open_lots preserves insertion order (the FIFO queue).
      - Lot ids are strictly increasing for the lifetime of the model.
      - net_position equals the sum of open signed lots whenever every
        close matches the size of the lot it consumes.
    """

    def __init__(
        self,
        lot_notional: float = LOT_NOTIONAL,
        tolerance: float = POSITION_TOLERANCE,
        close_policy: Optional[ClosePolicy] = None,
    ):
        """
        Initialize a flat position model.

        Args:
            lot_notional: Contract size of one lot (units per lot).
            tolerance: Magnitude below which the position counts as flat.
            close_policy: Lot selection for closes (FifoSingleLotClose by default).

        Raises:
            ValueError: If lot_notional or tolerance is not positive.
        """
        if lot_notional <= 0:
            raise ValueError(f"lot_notional must be positive, got {lot_notional}")
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")

        self._lot_notional = lot_notional
        self._tolerance = tolerance
        self._close_policy = close_policy or FifoSingleLotClose()

        self._open_lots: Dict[int, OpenLot] = {}
        self._next_lot_id = 0
        self._net_position = 0.0
        self._closed_pnl = 0.0

    @property
    def net_position(self) -> float:
        """Signed net lots (long positive, short negative)."""
        return self._net_position

    @property
    def closed_pnl(self) -> float:
        """Running sum of realized P&L from every close applied so far."""
        return self._closed_pnl

    @property
    def open_lots(self) -> Tuple[OpenLot, ...]:
        """Snapshot of open lots, oldest first."""
        return tuple(self._open_lots.values())

    @property
    def is_flat(self) -> bool:
        return abs(self._net_position) < self._tolerance

    def apply(self, trade: Trade) -> None:
        """Dispatch a trade to apply_open or apply_close by its kind."""
        if trade.kind is TradeKind.OPEN:
            self.apply_open(trade)
        else:
            self.apply_close(trade)

    def apply_open(self, trade: Trade) -> None:
        """
        Add a new lot for an Open trade.

        Args:
            trade: Open trade (BUY -> +lots, SELL -> -lots).

        Raises:
            ValueError: If the trade is not an Open.
        """
        if trade.kind is not TradeKind.OPEN:
            raise ValueError(f"apply_open expects an Open trade, got {trade.type_label}")

        signed_lots = trade.lots if trade.direction is Direction.LONG else -trade.lots

        lot = OpenLot(
            lot_id=self._next_lot_id,
            signed_lots=signed_lots,
            entry_price=trade.price,
            opened_at=trade.timestamp,
        )
        self._open_lots[lot.lot_id] = lot
        self._next_lot_id += 1
        self._net_position += signed_lots

    def apply_close(self, trade: Trade) -> None:
        """
        Consume one open lot for a Close trade and book its realized P&L.

        **Functionally**:
          - The close policy picks the lot (the oldest one under FIFO).
          - Orphan close (no open lot): position untouched, P&L still booked.
          - Otherwise net_position -= sign(lot) * trade.lots and the lot is
            removed entirely.

        Args:
            trade: Close trade (T/P or S/L).

        Raises:
            ValueError: If the trade is not a Close.
        """
        if trade.kind is not TradeKind.CLOSE:
            raise ValueError(f"apply_close expects a Close trade, got {trade.type_label}")

        lot_id = self._close_policy.select_lot(self._open_lots, trade)

        if lot_id is None:
            logger.debug("Orphan close at %s (no open lot)", trade.timestamp)
        else:
            lot = self._open_lots.pop(lot_id)
            direction = 1.0 if lot.signed_lots > 0 else -1.0
            self._net_position -= direction * trade.lots

        self._closed_pnl += trade.realized_pnl

    def average_entry_price(self) -> float:
        """
        Signed-lot-weighted mean entry price of the open lots.

        Returns:
            AEP, or 0.0 when the position is flat (inside the tolerance band)
            or the open lots' signed sizes net out to zero.
        """
        if self.is_flat:
            return 0.0

        sum_lots = 0.0
        sum_weighted = 0.0
        for lot in self._open_lots.values():
            sum_lots += lot.signed_lots
            sum_weighted += lot.signed_lots * lot.entry_price

        if abs(sum_lots) < self._tolerance:
            return 0.0

        return sum_weighted / sum_lots

    def floating_pnl(self, bar_close: float, conversion_fx: float) -> float:
        """
        Unrealized P&L of the open position marked at a bar close.

        Args:
            bar_close: Closing price of the bar.
            conversion_fx: Quote-to-account currency factor. Must be positive.

        Returns:
            (bar_close - AEP) * net_position * lot_notional / conversion_fx,
            or 0.0 when the position is flat.

        Raises:
            ValueError: If conversion_fx is not positive.
        """
        if conversion_fx <= 0:
            raise ValueError(f"conversion_fx must be positive, got {conversion_fx}")

        if self.is_flat:
            return 0.0

        aep = self.average_entry_price()
        return (bar_close - aep) * self._net_position * self._lot_notional / conversion_fx
