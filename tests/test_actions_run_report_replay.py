"""
Tests for the report replay action.

**Purpose**: Run the command-line workflow end to end on small files in a
temporary directory and check the exit code and the files it writes.
"""

import json
import sys
from pathlib import Path

import pandas as pd
import pytest

# Add project root to path so we can import actions module
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from actions.run_report_replay import main
from mtm_replay.utils.logging_setup import teardown_logging


LEDGER_CSV = """time,type,price,profit
2024.01.02 09:00,buy,1.1000,
2024.01.02 09:10,t/p,1.1050,50
"""

PRICES = [
    {"time": "2024-01-02 09:00:00", "open": "1.1", "high": "1.1", "low": "1.1", "close": "1.1000", "volume": "1"},
    {"time": "2024-01-02 09:05:00", "open": "1.1", "high": "1.1", "low": "1.1", "close": "1.1030", "volume": "1"},
    {"time": "2024-01-02 09:10:00", "open": "1.1", "high": "1.1", "low": "1.1", "close": "1.1050", "volume": "1"},
]


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    yield
    teardown_logging()


@pytest.fixture
def ledger_file(tmp_path):
    path = tmp_path / "ledger.csv"
    path.write_text(LEDGER_CSV, encoding="utf-8")
    return path


def test_full_replay_writes_outputs(tmp_path, ledger_file, capsys):
    prices = tmp_path / "prices.ndjson"
    prices.write_text("\n".join(json.dumps(p) for p in PRICES) + "\n", encoding="utf-8")
    out_dir = tmp_path / "results"

    code = main([
        "--ledger", str(ledger_file),
        "--prices", str(prices),
        "--symbol", "EURUSD,M15",
        "--output-dir", str(out_dir),
        "--log-level", "WARNING",
    ])

    assert code == 0
    valuations = pd.read_csv(out_dir / "eurusd_valuations.csv")
    assert len(valuations) == 3
    assert valuations["floating_pnl"].iloc[1] == pytest.approx(2.29, abs=0.01)
    assert valuations["total_pnl"].iloc[2] == pytest.approx(50.0)
    assert (out_dir / "eurusd_trades.csv").exists()

    metrics = json.loads((out_dir / "eurusd_metrics.json").read_text(encoding="utf-8"))
    assert metrics["closed_trades"] == 1

    assert "EURUSD (MT4) backtest replay" in capsys.readouterr().out


def test_date_filter_limits_valuations(tmp_path, ledger_file):
    prices = tmp_path / "prices.ndjson"
    prices.write_text("\n".join(json.dumps(p) for p in PRICES), encoding="utf-8")
    out_dir = tmp_path / "results"

    code = main([
        "--ledger", str(ledger_file),
        "--prices", str(prices),
        "--symbol", "EURUSD",
        "--output-dir", str(out_dir),
        "--from-date", "2024-01-03",
        "--log-level", "WARNING",
    ])

    assert code == 0
    assert pd.read_csv(out_dir / "eurusd_valuations.csv").empty


def test_ledger_only_without_prices(tmp_path, ledger_file, capsys):
    out_dir = tmp_path / "results"

    code = main(["--ledger", str(ledger_file), "--symbol", "GBPUSD", "--output-dir", str(out_dir)])

    assert code == 0
    assert (out_dir / "gbpusd_metrics.json").exists()
    assert not (out_dir / "gbpusd_valuations.csv").exists()
    assert "skipped (no price data)" in capsys.readouterr().out


def test_empty_ledger_exits_with_error(tmp_path, capsys):
    ledger = tmp_path / "ledger.csv"
    ledger.write_text("time,type,price\n2024.01.02 09:05,modify,1.1\n", encoding="utf-8")

    code = main(["--ledger", str(ledger), "--output-dir", str(tmp_path / "results")])

    assert code == 1
    assert "contains no trades" in capsys.readouterr().err


def test_missing_ledger_exits_with_error(tmp_path, capsys):
    code = main(["--ledger", str(tmp_path / "missing.csv")])

    assert code == 1
    assert "not found" in capsys.readouterr().err


def test_bad_environment_setting_exits_with_error(ledger_file, monkeypatch, capsys):
    monkeypatch.setenv("MTM_DEFAULT_CONVERSION_FX", "abc")

    code = main(["--ledger", str(ledger_file)])

    assert code == 1
    assert "MTM_DEFAULT_CONVERSION_FX" in capsys.readouterr().err
