"""
Tests for mtm_replay/orchestration/report_pipeline.py

These tests verify report-level behavior: symbol and platform handling, the
empty-ledger failure, ledger-only mode, and the price request window.
"""

import pandas as pd
import pytest

from mtm_replay.config.settings import ReplaySettings
from mtm_replay.data.schemas import PriceBar
from mtm_replay.ledger.trades import normalize_ledger_rows
from mtm_replay.orchestration.report_pipeline import (
    BacktestReport,
    EmptyLedgerError,
    PriceRequest,
    normalize_symbol,
    price_request_window,
    run_report,
    validate_platform,
)


def sample_trades():
    rows = [
        {"time": "2024.01.02 09:00", "type": "buy", "price": "1.1000"},
        {"time": "2024.01.02 09:10", "type": "t/p", "price": "1.1050", "profit": "50"},
        {"time": "2024.01.04 16:30", "type": "sell", "price": "1.2000"},
        {"time": "2024.01.04 17:00", "type": "s/l", "price": "1.2100", "profit": "-100"},
    ]
    return normalize_ledger_rows(rows).trades


def make_bar(time, close):
    return PriceBar(
        timestamp=pd.Timestamp(time),
        open=close,
        high=close,
        low=close,
        close=close,
        volume=0.0,
        conversion_fx=100.0,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("EURUSD,M15 (Euro vs US Dollar)", "EURUSD"),
        ("gbpjpy", "GBPJPY"),
        ("  USDJPY  ", "USDJPY"),
        ("", "Unknown"),
        (None, "Unknown"),
    ],
)
def test_normalize_symbol(raw, expected):
    assert normalize_symbol(raw) == expected


def test_validate_platform():
    assert validate_platform("mt4") == "MT4"
    assert validate_platform(" MT5 ") == "MT5"
    with pytest.raises(ValueError, match="Unsupported platform"):
        validate_platform("cTrader")


def test_report_normalizes_fields():
    report = BacktestReport(symbol="EURUSD,M15", platform="mt5", trades=sample_trades())

    assert report.symbol == "EURUSD"
    assert report.platform == "MT5"
    assert report.initial_deposit is None


def test_report_rejects_non_positive_deposit():
    with pytest.raises(ValueError):
        BacktestReport(symbol="EURUSD", platform="MT4", initial_deposit=0)


def test_empty_ledger_is_a_hard_failure():
    report = BacktestReport(symbol="EURUSD", platform="MT4", trades=[])

    with pytest.raises(EmptyLedgerError):
        run_report(report, settings=ReplaySettings())


@pytest.mark.parametrize("bars", [None, []])
def test_ledger_only_mode_without_prices(bars):
    report = BacktestReport(symbol="EURUSD", platform="MT4", trades=sample_trades())

    result = run_report(report, bars=bars, settings=ReplaySettings())

    assert result.ledger_only
    assert result.valuations is None
    assert result.metrics.total_trades == 4
    assert result.metrics.total_pnl == pytest.approx(-50.0)
    assert result.metrics.starting_balance == 100_000.0


def test_full_run_with_prices():
    report = BacktestReport(symbol="EURUSD", platform="MT4", trades=sample_trades())
    bars = [make_bar("2024-01-02 09:00", 1.1), make_bar("2024-01-02 09:15", 1.105)]

    result = run_report(report, bars=bars, settings=ReplaySettings())

    assert not result.ledger_only
    assert len(result.valuations.records) == 2
    assert result.valuations.records[-1].closed_pnl == pytest.approx(50.0)
    assert len(result.valuations.unapplied_trades) == 2


def test_initial_deposit_seeds_drawdown():
    report = BacktestReport(
        symbol="EURUSD", platform="MT4", trades=sample_trades(), initial_deposit=1_000.0
    )

    metrics = run_report(report, settings=ReplaySettings()).metrics

    assert metrics.starting_balance == 1_000.0
    assert metrics.max_drawdown_pct == pytest.approx(100.0 / 1050.0 * 100.0)


def test_price_request_window():
    request = price_request_window(sample_trades(), "EURUSD,M15", "M15")

    assert request == PriceRequest(
        symbol="EURUSD", from_date="2024-01-02", to_date="2024-01-04", timeframe="M15"
    )


def test_price_request_window_default_timeframe(monkeypatch):
    monkeypatch.setenv("MTM_PRICE_TIMEFRAME", "H1")

    assert price_request_window(sample_trades(), "EURUSD").timeframe == "H1"


def test_price_request_window_empty_ledger():
    with pytest.raises(EmptyLedgerError):
        price_request_window([], "EURUSD")
