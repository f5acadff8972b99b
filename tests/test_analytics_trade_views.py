"""
Tests for mtm_replay/analytics/trade_views.py
"""

from datetime import date

import pandas as pd
import pytest

from mtm_replay.analytics.trade_views import (
    CLOSED_POINT_COLUMNS,
    closed_trade_points,
    filter_trades,
    filter_valuations,
)
from mtm_replay.backtesting.replay_engine import ValuationRecord
from mtm_replay.ledger.trades import normalize_ledger_rows


def sample_trades():
    rows = [
        {"time": "2024.01.02 09:00", "type": "buy", "price": "1.10"},
        {"time": "2024.01.02 09:05", "type": "sell", "price": "1.11"},
        {"time": "2024.01.02 09:10", "type": "t/p", "price": "1.12", "profit": "20"},
        {"time": "2024.01.02 09:10", "type": "s/l", "price": "1.09", "profit": "-5"},
        {"time": "2024.01.02 09:02", "type": "close at stop", "price": "1.08", "profit": "-7"},
    ]
    return normalize_ledger_rows(rows).trades


def make_record(time):
    return ValuationRecord(
        timestamp=pd.Timestamp(time),
        position=0.0,
        closed_pnl=0.0,
        average_entry_price=0.0,
        bar_close_price=1.0,
        conversion_fx=1.0,
        floating_pnl=0.0,
        total_pnl=0.0,
    )


def test_filter_trades_by_selection():
    trades = sample_trades()

    assert len(filter_trades(trades, "ALL")) == 5
    assert [t.type_label for t in filter_trades(trades, "closed")] == ["T/P", "S/L", "S/L"]
    assert [t.type_label for t in filter_trades(trades, "BUY")] == ["BUY"]
    assert [t.type_label for t in filter_trades(trades, "s/l")] == ["S/L", "S/L"]


def test_filter_trades_rejects_unknown_selection():
    with pytest.raises(ValueError, match="Unknown trade selection"):
        filter_trades(sample_trades(), "MODIFY")


def test_filter_valuations_inclusive_bounds():
    records = [make_record(t) for t in ["2024-01-01 23:45", "2024-01-02 00:00", "2024-01-02 23:45", "2024-01-03 00:00"]]

    selected = filter_valuations(records, start="2024-01-02", end="2024-01-02")

    assert [r.timestamp for r in selected] == [
        pd.Timestamp("2024-01-02 00:00"),
        pd.Timestamp("2024-01-02 23:45"),
    ]


def test_filter_valuations_open_ended_and_date_objects():
    records = [make_record(t) for t in ["2024-01-01 12:00", "2024-01-05 12:00"]]

    assert filter_valuations(records) == records
    assert filter_valuations(records, start=date(2024, 1, 2)) == records[1:]
    assert filter_valuations(records, end=date(2024, 1, 1)) == records[:1]
    assert filter_valuations(records, end=pd.Timestamp("2024-01-01 11:00")) == []


def test_filter_valuations_rejects_inverted_range():
    with pytest.raises(ValueError):
        filter_valuations([], start="2024-02-01", end="2024-01-01")


def test_closed_trade_points_sorted_and_deduplicated():
    points = closed_trade_points(sample_trades())

    assert list(points.columns) == CLOSED_POINT_COLUMNS
    assert points["timestamp"].tolist() == [
        pd.Timestamp("2024-01-02 09:02"),
        pd.Timestamp("2024-01-02 09:10"),
    ]
    # the first close listed at 09:10 wins
    assert points["close_reason"].tolist() == ["S/L", "T/P"]
    assert points["realized_pnl"].tolist() == [-7.0, 20.0]


def test_closed_trade_points_empty():
    points = closed_trade_points([])

    assert points.empty
    assert list(points.columns) == CLOSED_POINT_COLUMNS
