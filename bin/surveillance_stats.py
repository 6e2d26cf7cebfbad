#!/usr/bin/env python3
"""
CWD-Dash Summary Statistics

Stat-card counts for the dashboard. Only published samples are counted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

import polars as pl

from process_records import RESULT_NEGATIVE, RESULT_PENDING, RESULT_POSITIVE, RESULT_UNFIT


@dataclass(frozen=True)
class SummaryStats:
    """Counts shown on the stat cards."""
    total: int = 0
    positive: int = 0
    negative: int = 0
    pending: int = 0
    unsuitable: int = 0

    @property
    def positive_rate_percent(self) -> float:
        tested = self.positive + self.negative
        if tested == 0:
            return 0.0
        return (self.positive / tested) * 100

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def summarize(df: pl.DataFrame) -> SummaryStats:
    """Count published samples by normalized result."""
    if not isinstance(df, pl.DataFrame) or "publish" not in df.columns:
        print("[Stats] Invalid data provided to summarize")
        return SummaryStats()

    published = df.filter(pl.col("publish"))
    if published.height == 0:
        return SummaryStats()

    row = published.select(
        pl.len().alias("total"),
        (pl.col("result") == RESULT_POSITIVE).sum().alias("positive"),
        (pl.col("result") == RESULT_NEGATIVE).sum().alias("negative"),
        (pl.col("result") == RESULT_PENDING).sum().alias("pending"),
        (pl.col("result") == RESULT_UNFIT).sum().alias("unsuitable"),
    ).row(0, named=True)

    return SummaryStats(**{k: int(v) for k, v in row.items()})


def format_count(value: int) -> str:
    return f"{value:,}"
