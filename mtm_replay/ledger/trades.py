"""
Trade ledger entities and normalization of scraped report rows.

**Conceptual**: A strategy-tester report lists one row per trade event:
market entries ("buy", "sell") and exits triggered by a take-profit or a
stop-loss. The scraper that reads the HTML hands us those rows as loosely
typed text mappings; this module is the boundary that turns them into
immutable Trade objects the position model can trust.

**Type vocabulary** (case-insensitive, MT4 and MT5 spellings):
  - "buy"                        -> Open, LONG
  - "sell"                       -> Open, SHORT
  - "t/p", "tp"                  -> Close, TAKE_PROFIT
  - "s/l", "sl", "close at stop" -> Close, STOP_LOSS

Rows with any other label (e.g. "modify") are not trades and are skipped
with a recorded reason, as are rows with a missing required field.

**Ordering**: The ledger's own row order is the tie-break for trades that
share a timestamp. normalize_ledger_rows stamps each Trade with its row
index (`sequence`) and sort_ledger uses (timestamp, sequence) as the key.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from mtm_replay.config.settings import DEFAULT_LOTS
from mtm_replay.utils.time import parse_timestamp

logger = logging.getLogger(__name__)


class TradeKind(Enum):
    """Whether a ledger event opens a new lot or closes an existing one."""
    OPEN = "open"
    CLOSE = "close"


class Direction(Enum):
    """Side of an opening trade."""
    LONG = "long"
    SHORT = "short"


class CloseReason(Enum):
    """
    Exit trigger of a closing trade.

    Both reasons are treated identically by the position model and the
    metrics; the reason is kept for display and filtering.
    """
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


# Normalized display label per (kind, sub-kind)
TYPE_LABELS = {
    Direction.LONG: "BUY",
    Direction.SHORT: "SELL",
    CloseReason.TAKE_PROFIT: "T/P",
    CloseReason.STOP_LOSS: "S/L",
}

_OPEN_LABELS = {
    "buy": Direction.LONG,
    "sell": Direction.SHORT,
}

_CLOSE_LABELS = {
    "t/p": CloseReason.TAKE_PROFIT,
    "tp": CloseReason.TAKE_PROFIT,
    "s/l": CloseReason.STOP_LOSS,
    "sl": CloseReason.STOP_LOSS,
    "close at stop": CloseReason.STOP_LOSS,
}

# Accepted keys per field, first match wins. camelCase keys are what the
# browser-side scraper emits.
FIELD_ALIASES: Dict[str, List[str]] = {
    "time": ["time", "timestamp"],
    "type": ["type", "raw_type"],
    "price": ["price"],
    "lots": ["lots", "size", "volume"],
    "profit_loss": ["profit_loss", "profitLoss", "profit", "realized_pnl"],
    "take_profit": ["take_profit", "takeProfit"],
    "stop_loss": ["stop_loss", "stopLoss"],
    "balance": ["balance"],
}


class LedgerRecordError(ValueError):
    """Raised when a single scraped row cannot be turned into a Trade."""
    pass


@dataclass(frozen=True)
class Trade:
    """
    One executed event from the strategy-tester ledger.

    Attributes:
        timestamp: Execution time (timezone-naive UTC).
        kind: TradeKind.OPEN or TradeKind.CLOSE.
        lots: Trade size in lots. Must be positive.
        price: Execution price.
        direction: Side of an Open trade (None for Close).
        close_reason: Exit trigger of a Close trade (None for Open).
        realized_pnl: Realized profit/loss reported for a Close trade.
                     Always 0.0 for Open trades.
        raw_type: Label as it appeared in the report (for display/debug).
        sequence: Row index in the original ledger (stable tie-break).
        take_profit: Take-profit level shown in the report, if any.
        stop_loss: Stop-loss level shown in the report, if any.
        balance: Account balance column shown in the report, if any.
    """
    timestamp: pd.Timestamp
    kind: TradeKind
    lots: float
    price: float
    direction: Optional[Direction] = None
    close_reason: Optional[CloseReason] = None
    realized_pnl: float = 0.0
    raw_type: str = ""
    sequence: int = 0
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    balance: Optional[float] = None

    def __post_init__(self):
        if not self.lots > 0:
            raise ValueError(f"lots must be positive, got {self.lots}")
        if self.kind is TradeKind.OPEN:
            if self.direction is None or self.close_reason is not None:
                raise ValueError("Open trades need a direction and no close reason.")
            if self.realized_pnl != 0.0:
                raise ValueError(
                    f"Open trades carry no realized P&L, got {self.realized_pnl}"
                )
        else:
            if self.close_reason is None or self.direction is not None:
                raise ValueError("Close trades need a close reason and no direction.")

    @property
    def is_open(self) -> bool:
        return self.kind is TradeKind.OPEN

    @property
    def is_close(self) -> bool:
        return self.kind is TradeKind.CLOSE

    @property
    def type_label(self) -> str:
        """Normalized label: BUY, SELL, T/P or S/L."""
        if self.is_open:
            return TYPE_LABELS[self.direction]
        return TYPE_LABELS[self.close_reason]

    @property
    def pnl_contribution(self) -> float:
        """Amount this trade adds to the running balance (0 for opens)."""
        return self.realized_pnl if self.is_close else 0.0


@dataclass(frozen=True)
class SkippedRecord:
    """
    A raw input record that was dropped, with the reason.

    Attributes:
        index: Position of the record in its source (row or line number).
        record: The offending record as received.
        reason: Human-readable explanation for the skip.
    """
    index: int
    record: Any
    reason: str


@dataclass
class LedgerParseResult:
    """Trades recovered from a scraped ledger plus the rows that were dropped."""
    trades: List[Trade] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)


def classify_trade_type(label: str) -> tuple[TradeKind, Optional[Direction], Optional[CloseReason]]:
    """
    Map a report type label onto (kind, direction, close_reason).

    Args:
        label: Type cell text, e.g. "buy", "T/P", "close at stop".

    Returns:
        Tuple (TradeKind, Direction or None, CloseReason or None).

    Raises:
        LedgerRecordError: If the label is not a trade type.
    """
    key = " ".join(str(label).strip().lower().split())
    if key in _OPEN_LABELS:
        return TradeKind.OPEN, _OPEN_LABELS[key], None
    if key in _CLOSE_LABELS:
        return TradeKind.CLOSE, None, _CLOSE_LABELS[key]
    raise LedgerRecordError(f"Unrecognized trade type: {label!r}")


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a numeric report cell.

    Reports format numbers with space or comma thousand separators and the
    occasional currency sign ("1 234.50", "$1,234.50"). Empty cells are None.

    Args:
        value: Cell value (str, int, float or None).

    Returns:
        Parsed float, or None when the cell is empty.

    Raises:
        LedgerRecordError: If the cell is non-empty but not a number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise LedgerRecordError(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        if pd.isna(value):
            return None
        try:
            number = float(value)
        except OverflowError:
            raise LedgerRecordError(f"Not a finite number: {value!r}")
    else:
        number = _parse_number_text(value)
        if number is None:
            return None

    if not math.isfinite(number):
        raise LedgerRecordError(f"Not a finite number: {value!r}")
    return number


def _parse_number_text(value: Any) -> Optional[float]:
    """Strip separators and currency signs from a text cell, then parse it."""
    text = str(value).strip()
    for token in ("$", ",", " ", "\u00a0"):
        text = text.replace(token, "")
    if text == "":
        return None
    try:
        return float(text)
    except ValueError:
        raise LedgerRecordError(f"Not a number: {value!r}")


def _field(row: Mapping[str, Any], name: str) -> Any:
    """Return the first present alias of a row field (None when absent)."""
    for key in FIELD_ALIASES[name]:
        if key in row:
            return row[key]
    return None


def normalize_ledger_row(
    row: Mapping[str, Any],
    sequence: int = 0,
    default_lots: float = DEFAULT_LOTS,
) -> Trade:
    """
    Convert one scraped report row into a Trade.

    **Required fields**: time, type, price; profit_loss on close rows.
    Lots default to `default_lots` when the row has no size column (reports
    without a size column are read as one lot per row).

    Args:
        row: Mapping of field name -> cell text.
        sequence: Row index in the ledger (stable tie-break key).
        default_lots: Lot size used when the row does not state one.

    Returns:
        Trade built from the row.

    Raises:
        LedgerRecordError: If a required field is missing or malformed,
                          the lot size is not positive, or the type is unknown.
    """
    raw_type = _field(row, "type")
    if raw_type is None or str(raw_type).strip() == "":
        raise LedgerRecordError("Missing trade type.")
    kind, direction, close_reason = classify_trade_type(str(raw_type))

    try:
        timestamp = parse_timestamp(_field(row, "time"))
    except ValueError as e:
        raise LedgerRecordError(f"Bad trade time: {e}")

    price = parse_number(_field(row, "price"))
    if price is None:
        raise LedgerRecordError("Missing trade price.")

    lots = parse_number(_field(row, "lots"))
    if lots is None:
        lots = default_lots
    if lots <= 0:
        raise LedgerRecordError(f"Lot size must be positive, got {lots}")

    realized_pnl = 0.0
    if kind is TradeKind.CLOSE:
        pnl = parse_number(_field(row, "profit_loss"))
        if pnl is None:
            raise LedgerRecordError("Missing realized P&L on close trade.")
        realized_pnl = pnl

    try:
        return Trade(
            timestamp=timestamp,
            kind=kind,
            lots=lots,
            price=price,
            direction=direction,
            close_reason=close_reason,
            realized_pnl=realized_pnl,
            raw_type=str(raw_type).strip(),
            sequence=sequence,
            take_profit=_optional_number(row, "take_profit"),
            stop_loss=_optional_number(row, "stop_loss"),
            balance=_optional_number(row, "balance"),
        )
    except ValueError as e:
        raise LedgerRecordError(str(e))


def _optional_number(row: Mapping[str, Any], name: str) -> Optional[float]:
    """Display-only numeric field: malformed values become None."""
    try:
        return parse_number(_field(row, name))
    except LedgerRecordError:
        return None


def normalize_ledger_rows(
    rows: Iterable[Mapping[str, Any]],
    default_lots: float = DEFAULT_LOTS,
) -> LedgerParseResult:
    """
    Normalize every scraped row, skipping the malformed ones.

    **Functionally**:
      - Each row is converted independently; one bad row never aborts the run.
      - Skipped rows are returned with their index and reason and logged at
        WARNING.
      - Trades keep the order of the input rows, and `sequence` records the
        original row index.

    Args:
        rows: Ordered scraped rows (mappings of field -> cell text).
        default_lots: Lot size used when a row does not state one.

    Returns:
        LedgerParseResult with trades (input order) and skipped rows.
    """
    result = LedgerParseResult()

    for index, row in enumerate(rows):
        try:
            trade = normalize_ledger_row(row, sequence=index, default_lots=default_lots)
        except LedgerRecordError as e:
            logger.warning("Skipping ledger row %d: %s", index, e)
            result.skipped.append(SkippedRecord(index=index, record=row, reason=str(e)))
            continue
        result.trades.append(trade)

    return result


def sort_ledger(trades: Iterable[Trade]) -> List[Trade]:
    """
    Return trades in replay order: by timestamp, ties in ledger order.

    Args:
        trades: Trades in any order.

    Returns:
        New list sorted by (timestamp, sequence). Python's sort is stable,
        so trades with equal keys also keep their relative input order.
    """
    return sorted(trades, key=lambda t: (t.timestamp, t.sequence))
