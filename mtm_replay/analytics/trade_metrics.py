"""
Ledger-only performance metrics for a strategy-tester report.

These metrics summarize the trade ledger itself and need no price data, so
they are available even when the price series could not be fetched. They
reproduce the headline figures shown next to the report:
  - Counts: total trades, closed trades (T/P + S/L), winners, losers.
  - Win rate over closed trades.
  - Total realized P&L, average win, average loss.
  - Maximum drawdown of a running balance seeded with a starting balance.
  - Profit factor.

Percentages are expressed on a 0-100 scale (12.5 means 12.5%).
"""

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from mtm_replay.config.settings import STARTING_BALANCE
from mtm_replay.ledger.trades import Trade


@dataclass(frozen=True)
class TradeMetrics:
    """
    Summary statistics over a full trade ledger.

    Attributes:
        total_trades: Number of ledger events (opens and closes).
        closed_trades: Number of Close events (T/P and S/L).
        winning_trades: Closed trades with positive realized P&L.
        losing_trades: Closed trades with negative realized P&L.
        win_rate_pct: 100 * winning / max(closed, 1).
        total_pnl: Sum of realized P&L over the ledger.
        avg_win: Mean of positive P&L contributions (0.0 when none).
        avg_loss: Mean of negative P&L contributions (0.0 when none; negative otherwise).
        max_drawdown_pct: Largest peak-to-balance drop of the running balance.
        profit_factor: Gross profit / gross loss (gross profit when loss is zero).
        starting_balance: Seed of the running balance used for drawdown.
    """
    total_trades: int
    closed_trades: int
    winning_trades: int
    losing_trades: int
    win_rate_pct: float
    total_pnl: float
    avg_win: float
    avg_loss: float
    max_drawdown_pct: float
    profit_factor: float
    starting_balance: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _closed(trades: Iterable[Trade]) -> List[Trade]:
    return [t for t in trades if t.is_close]


def compute_win_rate_pct(trades: Iterable[Trade]) -> float:
    """
    Share of closed trades that made money, in percent.

    **Mathematical**:
        win_rate = 100 * winning_closed / max(closed_count, 1)

    **Edge cases**:
    - No closed trades -> 0.0. Flooring the denominator at 1 reports 0%
      rather than an undefined rate; the bias toward 0% is intentional and
      matches the report's own summary.
    - Break-even closes (P&L == 0) count as neither win nor loss but stay
      in the denominator.

    Args:
        trades: Trade ledger.

    Returns:
        Win rate on a 0-100 scale.
    """
    closed = _closed(trades)
    winners = sum(1 for t in closed if t.realized_pnl > 0)
    return 100.0 * winners / max(len(closed), 1)


def compute_balance_series(
    trades: Iterable[Trade],
    starting_balance: float = STARTING_BALANCE,
) -> pd.Series:
    """
    Running account balance after each ledger trade, in ledger order.

    Open trades contribute 0, so the balance only moves on closes.

    Args:
        trades: Trade ledger (order is preserved, not re-sorted).
        starting_balance: Balance before the first trade.

    Returns:
        Series of post-trade balances with a RangeIndex (one entry per trade).
    """
    contributions = np.array([t.pnl_contribution for t in trades], dtype=float)
    return pd.Series(starting_balance + np.cumsum(contributions), name='balance')


def compute_balance_drawdown_series(
    trades: Iterable[Trade],
    starting_balance: float = STARTING_BALANCE,
) -> pd.Series:
    """
    Drawdown of the running balance from its running peak, per trade.

    **Mathematical**: With balance_t the balance after trade t and
    peak_t = max(balance_0, ..., balance_t):
        drawdown_t = 100 * (peak_t - balance_t) / peak_t   if peak_t > 0
        drawdown_t = 0                                      otherwise

    The seed balance itself is not part of the peak; the first peak is the
    balance after the first trade.

    Args:
        trades: Trade ledger (ledger order).
        starting_balance: Balance before the first trade.

    Returns:
        Series of drawdowns (values >= 0, percent), one entry per trade.
    """
    balance = compute_balance_series(trades, starting_balance)
    if balance.empty:
        return pd.Series([], dtype=float, name='drawdown_pct')

    peak = balance.cummax()
    drawdown = pd.Series(
        np.where(peak > 0, (peak - balance) / peak.where(peak > 0, 1.0) * 100.0, 0.0),
        index=balance.index,
        name='drawdown_pct',
    )
    return drawdown


def compute_running_max_drawdown(
    trades: Iterable[Trade],
    starting_balance: float = STARTING_BALANCE,
) -> pd.Series:
    """
    Worst drawdown seen so far after each trade (non-decreasing, percent).

    Args:
        trades: Trade ledger (ledger order).
        starting_balance: Balance before the first trade.

    Returns:
        Running maximum of compute_balance_drawdown_series.
    """
    drawdown = compute_balance_drawdown_series(trades, starting_balance)
    return drawdown.cummax().rename('max_drawdown_pct')


def compute_max_drawdown_pct(
    trades: Iterable[Trade],
    starting_balance: float = STARTING_BALANCE,
) -> float:
    """
    Largest drawdown of the running balance over the whole ledger.

    Args:
        trades: Trade ledger (ledger order).
        starting_balance: Balance before the first trade.

    Returns:
        Maximum drawdown in percent (0.0 for an empty ledger).
    """
    drawdown = compute_balance_drawdown_series(trades, starting_balance)
    if drawdown.empty:
        return 0.0
    return float(drawdown.max())


def compute_profit_factor(trades: Iterable[Trade]) -> float:
    """
    Gross profit divided by gross loss.

    **Edge cases**:
    - Gross loss == 0 -> returns gross profit itself. This keeps the report's
      behavior (no division by zero) at the cost of mixing a ratio with a
      currency amount; callers displaying it should be aware.

    Args:
        trades: Trade ledger.

    Returns:
        Profit factor.
    """
    pnl = [t.pnl_contribution for t in trades]
    total_profit = sum(p for p in pnl if p > 0)
    total_loss = abs(sum(p for p in pnl if p < 0))
    if total_loss == 0:
        return float(total_profit)
    return total_profit / total_loss


def compute_trade_metrics(
    trades: Iterable[Trade],
    starting_balance: Optional[float] = None,
) -> TradeMetrics:
    """
    Compute every ledger metric in one pass over the trade list.

    Args:
        trades: Trade ledger in ledger order (the drawdown walk uses this order).
        starting_balance: Seed balance for drawdown (STARTING_BALANCE when None).

    Returns:
        TradeMetrics summary.
    """
    trades = list(trades)
    balance_seed = STARTING_BALANCE if starting_balance is None else starting_balance

    closed = _closed(trades)
    pnl = [t.pnl_contribution for t in trades]
    profits = [p for p in pnl if p > 0]
    losses = [p for p in pnl if p < 0]

    return TradeMetrics(
        total_trades=len(trades),
        closed_trades=len(closed),
        winning_trades=sum(1 for t in closed if t.realized_pnl > 0),
        losing_trades=sum(1 for t in closed if t.realized_pnl < 0),
        win_rate_pct=compute_win_rate_pct(trades),
        total_pnl=float(sum(pnl)),
        avg_win=float(np.mean(profits)) if profits else 0.0,
        avg_loss=float(np.mean(losses)) if losses else 0.0,
        max_drawdown_pct=compute_max_drawdown_pct(trades, balance_seed),
        profit_factor=compute_profit_factor(trades),
        starting_balance=balance_seed,
    )
