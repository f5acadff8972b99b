"""
End-to-end processing of one strategy-tester report.

**Conceptual**: A report arrives as a symbol, a platform tag and a ledger of
trades. The pipeline always computes the ledger metrics; when a price series
is available it also replays the ledger bar by bar for the mark-to-market
view. Without prices the result is "ledger-only": metrics are still
returned, valuations are not.

**Flow**:
  1. Reject a report with no trades (EmptyLedgerError).
  2. Compute TradeMetrics over the ledger (ledger order).
  3. If bars were supplied, run the replay engine over them.

The pipeline also describes which bars the price collaborator needs
(price_request_window) but never fetches them itself.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from mtm_replay.analytics.trade_metrics import TradeMetrics, compute_trade_metrics
from mtm_replay.backtesting.replay_engine import ReplayResult, replay
from mtm_replay.config.settings import ReplaySettings, get_settings
from mtm_replay.data.schemas import PriceBar
from mtm_replay.ledger.trades import Trade

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("MT4", "MT5")
SYMBOL_LENGTH = 6
UNKNOWN_SYMBOL = "Unknown"


class EmptyLedgerError(ValueError):
    """Raised when a report carries no usable trades."""
    pass


def normalize_symbol(raw: Optional[str]) -> str:
    """
    Reduce a report's symbol cell to the bare instrument code.

    Reports show the symbol with its description, e.g.
    "EURUSD,M15 (Euro vs US Dollar)"; the code is the first six characters.

    Args:
        raw: Symbol cell text (None or blank when the report has none).

    Returns:
        Upper-cased six-character code, or "Unknown" when there is no symbol.
    """
    if raw is None:
        return UNKNOWN_SYMBOL
    text = str(raw).strip()
    if not text:
        return UNKNOWN_SYMBOL
    return text[:SYMBOL_LENGTH].upper()


def validate_platform(name: str) -> str:
    """
    Check a platform tag against the supported strategy testers.

    Args:
        name: Platform label, case-insensitive ("mt4", "MT5", ...).

    Returns:
        Canonical label ("MT4" or "MT5").

    Raises:
        ValueError: If the platform is not supported.
    """
    label = str(name).strip().upper()
    if label not in SUPPORTED_PLATFORMS:
        raise ValueError(
            f"Unsupported platform: {name!r}. Expected one of {list(SUPPORTED_PLATFORMS)}."
        )
    return label


@dataclass
class BacktestReport:
    """
    A parsed strategy-tester report.

    Attributes:
        symbol: Instrument code (see normalize_symbol).
        platform: "MT4" or "MT5".
        trades: Ledger trades in report order.
        initial_deposit: Starting deposit stated by the report. None means
                        the configured starting balance is used.
    """
    symbol: str
    platform: str
    trades: List[Trade] = field(default_factory=list)
    initial_deposit: Optional[float] = None

    def __post_init__(self):
        self.symbol = normalize_symbol(self.symbol)
        self.platform = validate_platform(self.platform)
        if self.initial_deposit is not None and self.initial_deposit <= 0:
            raise ValueError(f"initial_deposit must be positive, got {self.initial_deposit}")


@dataclass
class ReportResult:
    """
    Outcome of run_report.

    Attributes:
        metrics: Ledger metrics (always present).
        valuations: Replay output, or None in ledger-only mode.
        ledger_only: True when no price bars were available.
    """
    metrics: TradeMetrics
    valuations: Optional[ReplayResult] = None
    ledger_only: bool = True


@dataclass(frozen=True)
class PriceRequest:
    """
    Bar range the price collaborator must supply for a report.

    Attributes:
        symbol: Instrument code.
        from_date: Date of the earliest trade (YYYY-MM-DD).
        to_date: Date of the latest trade (YYYY-MM-DD).
        timeframe: Bar timeframe label, e.g. "M15".
    """
    symbol: str
    from_date: str
    to_date: str
    timeframe: str


def price_request_window(
    trades: Iterable[Trade],
    symbol: str,
    timeframe: Optional[str] = None,
) -> PriceRequest:
    """
    Describe the price series needed to replay a ledger.

    Args:
        trades: Ledger trades (any order).
        symbol: Instrument code.
        timeframe: Bar timeframe (the configured price timeframe when None).

    Returns:
        PriceRequest spanning the first to the last trade date.

    Raises:
        EmptyLedgerError: If there are no trades.
    """
    timestamps = [t.timestamp for t in trades]
    if not timestamps:
        raise EmptyLedgerError("Cannot build a price request for an empty ledger.")

    return PriceRequest(
        symbol=normalize_symbol(symbol),
        from_date=min(timestamps).strftime('%Y-%m-%d'),
        to_date=max(timestamps).strftime('%Y-%m-%d'),
        timeframe=timeframe or get_settings().price_timeframe,
    )


def run_report(
    report: BacktestReport,
    bars: Optional[Iterable[PriceBar]] = None,
    settings: Optional[ReplaySettings] = None,
) -> ReportResult:
    """
    Compute metrics and, when prices are available, the bar-by-bar valuation.

    Args:
        report: Parsed report.
        bars: Price bars for the report's symbol. None or empty selects
              ledger-only mode.
        settings: Valuation constants (get_settings() when None).

    Returns:
        ReportResult.

    Raises:
        EmptyLedgerError: If the report has no trades.
    """
    settings = settings or get_settings()

    if not report.trades:
        raise EmptyLedgerError(
            f"{report.symbol} ({report.platform}): the report contains no trades."
        )

    starting_balance = (
        report.initial_deposit if report.initial_deposit is not None else settings.starting_balance
    )
    metrics = compute_trade_metrics(report.trades, starting_balance=starting_balance)

    bar_list = list(bars) if bars is not None else []
    if not bar_list:
        logger.info(
            "%s (%s): no price bars, reporting ledger metrics only",
            report.symbol,
            report.platform,
        )
        return ReportResult(metrics=metrics, valuations=None, ledger_only=True)

    valuations = replay(report.trades, bar_list, settings=settings)
    logger.info(
        "%s (%s): %d trades valued over %d bars (%s to %s)",
        report.symbol,
        report.platform,
        len(report.trades),
        len(valuations.records),
        valuations.records[0].timestamp,
        valuations.records[-1].timestamp,
    )
    return ReportResult(metrics=metrics, valuations=valuations, ledger_only=False)
