"""Tests for surveillance_stats."""

from __future__ import annotations

import polars as pl

from process_records import process_records
from surveillance_stats import SummaryStats, format_count, summarize


def frame(*specs):
    raw = [
        {"OBJECTID": i, "Specimen_No": f"S-{i}", "RESULT": result, "Publish": publish, "PERMITYEAR": 2024}
        for i, (result, publish) in enumerate(specs)
    ]
    return process_records(raw, current_year=2024)


def test_counts_published_rows_by_result():
    df = frame(
        ("Positive", "Y"),
        ("Not Detected", "Y"),
        ("Not Detected", "Y"),
        ("Pending", "Y"),
        ("Sample Unsuitable", "Y"),
        ("Positive", "N"),
    )
    stats = summarize(df)
    assert stats == SummaryStats(total=5, positive=1, negative=2, pending=1, unsuitable=1)


def test_unpublished_only_is_all_zero():
    assert summarize(frame(("Positive", "N"))) == SummaryStats()


def test_invalid_input(capsys):
    assert summarize([]) == SummaryStats()
    assert summarize(pl.DataFrame({"a": [1]})) == SummaryStats()
    assert "[Stats] Invalid" in capsys.readouterr().out


def test_positive_rate():
    assert SummaryStats(total=10, positive=1, negative=3).positive_rate_percent == 25.0
    assert SummaryStats().positive_rate_percent == 0.0


def test_to_dict():
    assert SummaryStats(total=2, positive=1).to_dict() == {
        "total": 2, "positive": 1, "negative": 0, "pending": 0, "unsuitable": 0,
    }


def test_format_count():
    assert format_count(1234567) == "1,234,567"
    assert format_count(0) == "0"
