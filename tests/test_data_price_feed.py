"""
Tests for mtm_replay/data/price_feed.py

These tests verify line-by-line parsing of the newline-delimited JSON price
feed: string-typed numbers, the conversion-factor fallback, skipping of
malformed lines, and ascending de-duplicated output.
"""

import json

import pandas as pd
import pytest

from mtm_replay.config.settings import DEFAULT_CONVERSION_FX
from mtm_replay.data.price_feed import (
    PriceLineError,
    bars_to_frame,
    frame_to_bars,
    parse_price_ndjson,
    parse_price_record,
    read_price_ndjson,
)


def feed_line(time, close, **extra):
    item = {
        "time": time,
        "open": str(close),
        "high": str(close),
        "low": str(close),
        "close": str(close),
        "volume": "100",
    }
    item.update(extra)
    return json.dumps(item)


def test_parse_record_reads_string_numbers():
    bar = parse_price_record(json.loads(feed_line("2024-01-02 09:00:00", 1.1005, conversionFx="130.9", symbol="EURUSD")))

    assert bar.timestamp == pd.Timestamp("2024-01-02 09:00:00")
    assert bar.close == pytest.approx(1.1005)
    assert bar.volume == 100.0
    assert bar.conversion_fx == pytest.approx(130.9)
    assert bar.symbol == "EURUSD"


@pytest.mark.parametrize("fx", [None, "", "  "])
def test_missing_conversion_fx_uses_default(fx):
    item = json.loads(feed_line("2024-01-02 09:00:00", 1.1))
    if fx is not None:
        item["conversionFx"] = fx

    assert parse_price_record(item).conversion_fx == DEFAULT_CONVERSION_FX
    assert parse_price_record(item, default_conversion_fx=2.0).conversion_fx == 2.0


@pytest.mark.parametrize("fx", ["0", "-1.5"])
def test_non_positive_conversion_fx_is_rejected(fx):
    item = json.loads(feed_line("2024-01-02 09:00:00", 1.1, conversionFx=fx))

    with pytest.raises(PriceLineError, match="conversionFx"):
        parse_price_record(item)


def test_missing_field_is_rejected():
    item = json.loads(feed_line("2024-01-02 09:00:00", 1.1))
    del item["close"]

    with pytest.raises(PriceLineError, match="close"):
        parse_price_record(item)


def test_malformed_lines_are_skipped_not_fatal():
    text = "\n".join(
        [
            feed_line("2024-01-02 09:15:00", 1.2),
            "{not json",
            "",
            feed_line("2024-01-02 09:00:00", 1.1),
            json.dumps({"time": "2024-01-02 09:30:00", "open": "x", "high": "1", "low": "1", "close": "1", "volume": "1"}),
            "[1, 2, 3]",
        ]
    )

    result = parse_price_ndjson(text)

    assert [b.close for b in result.bars] == [pytest.approx(1.1), pytest.approx(1.2)]
    assert [s.index for s in result.skipped] == [2, 5, 6]


def test_non_finite_values_are_skipped_not_fatal():
    """
    Scenario: one line carries an infinite epoch time (json accepts the
    bare Infinity literal) and another an overflowing close. Both lines are
    skipped and the good bar survives.
    """
    text = "\n".join(
        [
            '{"time": Infinity, "open": "1", "high": "1", "low": "1", "close": "1", "volume": "1"}',
            feed_line("2024-01-02 09:00:00", 1.1),
            feed_line("2024-01-02 09:15:00", "1e400"),
            feed_line(10 ** 30, 1.3),
            feed_line("2024-01-02 09:30:00", 1.2, conversionFx="NaN"),
        ]
    )

    result = parse_price_ndjson(text)

    assert [b.close for b in result.bars] == [pytest.approx(1.1)]
    assert [s.index for s in result.skipped] == [1, 3, 4, 5]
    assert "time" in result.skipped[0].reason
    assert "finite" in result.skipped[1].reason


def test_read_price_ndjson_skips_undecodable_line(tmp_path):
    path = tmp_path / "prices.ndjson"
    path.write_bytes(
        feed_line("2024-01-02 09:00:00", 1.1).encode("utf-8")
        + b"\n"
        + b'{"time": "2024-01-02 09:15:00", "symbol": "\xff\xfe"}\n'
        + feed_line("2024-01-02 09:30:00", 1.2).encode("utf-8")
        + b"\n"
    )

    result = read_price_ndjson(path)

    assert [b.close for b in result.bars] == [pytest.approx(1.1), pytest.approx(1.2)]
    assert [s.index for s in result.skipped] == [2]
    assert "utf-8" in result.skipped[0].reason


def test_duplicate_timestamps_keep_first_line():
    text = "\n".join(
        [
            feed_line("2024-01-02 09:00:00", 1.1),
            feed_line("2024-01-02 09:00:00", 9.9),
        ]
    )

    result = parse_price_ndjson(text)

    assert len(result.bars) == 1
    assert result.bars[0].close == pytest.approx(1.1)


def test_read_price_ndjson(tmp_path):
    path = tmp_path / "prices.ndjson"
    path.write_text(feed_line("2024-01-02 09:00:00", 1.1) + "\n", encoding="utf-8")

    result = read_price_ndjson(path)

    assert len(result.bars) == 1
    assert result.skipped == []


def test_read_price_ndjson_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_price_ndjson(tmp_path / "missing.ndjson")


def test_frame_conversion_fills_missing_fx():
    bars = parse_price_ndjson(feed_line("2024-01-02 09:00:00", 1.1, conversionFx="150")).bars
    df = bars_to_frame(bars)
    df.loc[0, "conversion_fx"] = float("nan")

    restored = frame_to_bars(df, default_conversion_fx=3.0)

    assert restored[0].conversion_fx == 3.0
    assert restored[0].timestamp == bars[0].timestamp
    assert restored[0].close == pytest.approx(1.1)
