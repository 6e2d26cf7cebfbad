#!/usr/bin/env python3
"""
CWD-Dash Dashboard Controller

Holds the loaded samples, the dashboard-level filters (year, county, result,
deduplicate) and explicit references to the map, table and stats views.
Every filter change pushes the filtered frame to all three.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import polars as pl

from county_map import CountyMap
from process_records import empty_frame, process_records
from sample_table import SampleTable
from surveillance_stats import SummaryStats, summarize


@dataclass
class DashboardFilters:
    year: str = ""
    county: str = ""
    result: str = ""
    deduplicate: bool = True


def apply_dashboard_filters(df: pl.DataFrame, filters: DashboardFilters) -> pl.DataFrame:
    """Exact-match year, county and result filters; blank means all."""
    if filters.year:
        df = df.filter(pl.col("permit_year") == int(filters.year))
    if filters.county:
        df = df.filter(pl.col("county_name") == filters.county)
    if filters.result:
        df = df.filter(pl.col("result") == filters.result)
    return df


class Dashboard:
    """Cross-filtering controller for the map, table and stat cards."""

    def __init__(
        self,
        map_view: CountyMap,
        table: SampleTable,
        on_stats: Optional[Callable[[SummaryStats], None]] = None,
    ):
        self.map = map_view
        self.table = table
        self.on_stats = on_stats
        self.filters = DashboardFilters()

        self.raw_data: list[dict[str, Any]] = []
        self.all_data = empty_frame()
        self.deduplicated_data = empty_frame()
        self.filtered_data = empty_frame()
        self.stats = SummaryStats()

        if self.map.on_select is None:
            self.map.on_select = self._on_map_select

    def load(self, raw: list[dict[str, Any]]) -> None:
        """Process raw records both ways and render everything."""
        self.raw_data = raw
        self.all_data = process_records(raw, deduplicate=False)
        self.deduplicated_data = process_records(raw, deduplicate=True)
        print(f"[Dashboard] Loaded {self.all_data.height} total CWD samples "
              f"({self.deduplicated_data.height} after deduplication)")
        self.update_all()

    def year_options(self) -> list[int]:
        return sorted(self.all_data.get_column("permit_year").drop_nulls().unique().to_list())

    def county_options(self) -> list[str]:
        values = self.all_data.get_column("county_name").drop_nulls().unique().to_list()
        return sorted(v for v in values if v)

    def result_options(self) -> list[str]:
        return sorted(self.all_data.get_column("result").drop_nulls().unique().to_list())

    def set_filter(self, name: str, value: Any) -> None:
        if not hasattr(self.filters, name):
            raise KeyError(f"Unknown dashboard filter: {name}")
        setattr(self.filters, name, value)
        if name == "county":
            self.map.selected_county = value or None
        self.update_all()

    def _on_map_select(self, county: Optional[str]) -> None:
        self.filters.county = county or ""
        self.update_all()

    def apply_filters(self) -> pl.DataFrame:
        source = self.deduplicated_data if self.filters.deduplicate else self.all_data
        self.filtered_data = apply_dashboard_filters(source, self.filters)
        return self.filtered_data

    def update_all(self) -> None:
        self.apply_filters()
        self.map.update(self.filtered_data)
        self.table.update(self.filtered_data)
        self.stats = summarize(self.filtered_data)
        if self.on_stats is not None:
            self.on_stats(self.stats)

    def count_label(self) -> str:
        return f"{self.filtered_data.height} samples"
