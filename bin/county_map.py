#!/usr/bin/env python3
"""
CWD-Dash County Map Model

Choropleth state for the Missouri county map: which metric is shown, the
sequential color ramp and its domain, tooltips, the legend and the selected
county. Selection changes are pushed to an injected callback so the map
never reaches into the dashboard.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import polars as pl

from process_records import group_by_county


NO_DATA_COLOR = "#e0e0e0"

MISSOURI_COUNTIES = [
    "Adair", "Andrew", "Atchison", "Audrain", "Barry", "Barton", "Bates", "Benton",
    "Bollinger", "Boone", "Buchanan", "Butler", "Caldwell", "Callaway", "Camden",
    "Cape Girardeau", "Carroll", "Carter", "Cass", "Cedar", "Chariton", "Christian",
    "Clark", "Clay", "Clinton", "Cole", "Cooper", "Crawford", "Dade", "Dallas",
    "Daviess", "DeKalb", "Dent", "Douglas", "Dunklin", "Franklin", "Gasconade",
    "Gentry", "Greene", "Grundy", "Harrison", "Henry", "Hickory", "Holt", "Howard",
    "Howell", "Iron", "Jackson", "Jasper", "Jefferson", "Johnson", "Knox", "Laclede",
    "Lafayette", "Lawrence", "Lewis", "Lincoln", "Linn", "Livingston", "McDonald",
    "Macon", "Madison", "Maries", "Marion", "Mercer", "Miller", "Mississippi",
    "Moniteau", "Monroe", "Montgomery", "Morgan", "New Madrid", "Newton", "Nodaway",
    "Oregon", "Osage", "Ozark", "Pemiscot", "Perry", "Pettis", "Phelps", "Pike",
    "Platte", "Polk", "Pulaski", "Putnam", "Ralls", "Randolph", "Ray", "Reynolds",
    "Ripley", "St. Charles", "St. Clair", "Ste. Genevieve", "St. Francois",
    "St. Louis", "Saline", "Schuyler", "Scotland", "Scott", "Shannon", "Shelby",
    "Stoddard", "Stone", "Sullivan", "Taney", "Texas", "Vernon", "Warren",
    "Washington", "Wayne", "Webster", "Worth", "Wright", "St. Louis City",
]


@dataclass(frozen=True)
class Metric:
    key: str
    label: str
    column: str
    ramp: tuple[str, ...]       # light → dark color stops


METRICS = {
    "total": Metric("total", "Total Samples", "count", ("#f7fbff", "#6baed6", "#08306b")),
    "positive": Metric("positive", "Positive", "positive", ("#fff5f0", "#fb6a4a", "#67000d")),
    "notDetected": Metric("notDetected", "Not Detected", "negative", ("#f7fcf5", "#74c476", "#00441b")),
    "pending": Metric("pending", "Pending", "pending", ("#fff5eb", "#fd8d3c", "#7f2704")),
    "unsuitable": Metric("unsuitable", "Unsuitable", "unsuitable", ("#ffffff", "#969696", "#000000")),
}


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    color = color.lstrip("#")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def interpolate_ramp(ramp: tuple[str, ...], t: float) -> str:
    """Piecewise-linear RGB interpolation across the ramp stops, t in [0, 1]."""
    t = min(max(t, 0.0), 1.0)
    if len(ramp) == 1:
        return ramp[0]

    scaled = t * (len(ramp) - 1)
    i = min(int(scaled), len(ramp) - 2)
    frac = scaled - i
    a, b = _hex_to_rgb(ramp[i]), _hex_to_rgb(ramp[i + 1])
    r, g, bl = (round(x + (y - x) * frac) for x, y in zip(a, b))
    return f"#{r:02x}{g:02x}{bl:02x}"


@dataclass(frozen=True)
class Legend:
    label: str
    min_color: str
    max_color: str
    max_value: int


class CountyMap:
    """County-level choropleth state for the currently filtered samples."""

    def __init__(
        self,
        on_select: Optional[Callable[[Optional[str]], None]] = None,
        counties: Optional[list[str]] = None,
    ):
        self.on_select = on_select
        self.counties = list(counties) if counties is not None else list(MISSOURI_COUNTIES)
        self.metric = METRICS["total"]
        self.selected_county: Optional[str] = None
        self.max_value = 0
        self._by_county: dict[str, dict] = {}

    def set_metric(self, key: str) -> None:
        if key not in METRICS:
            raise KeyError(f"Unknown map metric: {key}")
        self.metric = METRICS[key]
        self._recompute_domain()

    def update(self, df: pl.DataFrame) -> None:
        """Recompute per-county stats from the filtered samples."""
        stats = group_by_county(df)
        self._by_county = {row["county"].lower(): row for row in stats.iter_rows(named=True)}
        self._recompute_domain()

    def _recompute_domain(self) -> None:
        values = [row[self.metric.column] for row in self._by_county.values()]
        self.max_value = int(max(values)) if values else 0

    def stats_for(self, county: str) -> Optional[dict]:
        return self._by_county.get(county.lower())

    def value_for(self, county: str) -> int:
        stats = self.stats_for(county)
        return int(stats[self.metric.column]) if stats else 0

    def fill_for(self, county: str) -> str:
        """Ramp color for counties with samples, neutral gray otherwise."""
        stats = self.stats_for(county)
        if not stats or stats["count"] <= 0:
            return NO_DATA_COLOR
        if self.max_value <= 0:
            return self.metric.ramp[0]
        return interpolate_ramp(self.metric.ramp, self.value_for(county) / self.max_value)

    def tooltip_for(self, county: Optional[str]) -> str:
        name = county or "Unknown"
        stats = self.stats_for(county) if county else None
        if stats is None:
            return f"{name}\nNo CWD samples"
        return (
            f"{name}\n"
            f"Total Samples: {stats['count']}\n"
            f"Pending: {stats['pending']}\n"
            f"Positive: {stats['positive']}\n"
            f"Not Detected: {stats['negative']}"
        )

    def legend(self) -> Legend:
        return Legend(
            label=self.metric.label,
            min_color=interpolate_ramp(self.metric.ramp, 0.0),
            max_color=interpolate_ramp(self.metric.ramp, 1.0),
            max_value=self.max_value,
        )

    def select(self, county: Optional[str]) -> Optional[str]:
        """Click on a county: selecting the selected county clears it."""
        if county is None or county == self.selected_county:
            self.selected_county = None
        else:
            self.selected_county = county
        if self.on_select is not None:
            self.on_select(self.selected_county)
        return self.selected_county

    def clear_selection(self) -> None:
        self.select(None)
