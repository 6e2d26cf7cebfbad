#!/usr/bin/env python3
"""
CWD-Dash Sample Table

Table model behind the dashboard's sample list: text and checkbox filters,
a harvest date window, click-to-sort columns and fixed-size pages.
Rendering is left to the UI; this module produces display-ready rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from math import ceil
from typing import Any, Optional

import polars as pl


ITEMS_PER_PAGE = 20

RESULT_COLORS = {
    "Pending": "#ffc107",
    "Positive": "#dc3545",
    "Negative": "#28a745",
    "Unfit": "#6c757d",
}
DEFAULT_RESULT_COLOR = "#6c757d"

COLLECTION_DATE_NOTE = "* Collection date used when harvest date is not available"


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    width: str


COLUMNS = [
    Column("specimen_no", "Specimen", "120px"),
    Column("county_name", "County", "100px"),
    Column("harvest_date", "Harvested", "120px"),
    Column("result", "Result", "80px"),
    Column("telecheck_id", "Telecheck", "120px"),
    Column("deer_sex_name", "Sex", "60px"),
    Column("deer_age_name", "Age", "60px"),
    Column("sample_type", "Sample", "100px"),
]


@dataclass
class TableFilters:
    """Active table filters. Empty sets and blank strings mean 'no filter'."""
    specimen: str = ""
    county: str = ""
    telecheck: str = ""
    result: set[str] = field(default_factory=set)
    sex: set[str] = field(default_factory=set)
    age: set[str] = field(default_factory=set)
    sample_type: set[str] = field(default_factory=set)
    harvest_date_start: Optional[date] = None
    harvest_date_end: Optional[date] = None

    def clear(self) -> None:
        self.specimen = ""
        self.county = ""
        self.telecheck = ""
        self.result.clear()
        self.sex.clear()
        self.age.clear()
        self.sample_type.clear()
        self.harvest_date_start = None
        self.harvest_date_end = None


# Text filter attribute → column
_TEXT_FILTERS = {
    "specimen": "specimen_no",
    "county": "county_name",
    "telecheck": "telecheck_id",
}

# Checkbox filter attribute → column
_SET_FILTERS = {
    "result": "result",
    "sex": "deer_sex_name",
    "age": "deer_age_name",
    "sample_type": "sample_type",
}

# Checkbox groups shown above the table, in display order
FILTER_GROUPS = [
    ("result", "Result"),
    ("sex", "Sex"),
    ("age", "Age"),
    ("sample_type", "Sample Type"),
]


def format_date(harvest_date: Optional[date], collection_date: Optional[date]) -> str:
    """MM/DD/YY of the harvest date, else the collection date marked with '*'."""
    if harvest_date is not None:
        return harvest_date.strftime("%m/%d/%y")
    if collection_date is not None:
        return f"{collection_date.strftime('%m/%d/%y')}*"
    return "-"


def parse_date_input(value: Optional[str]) -> Optional[date]:
    """ISO `YYYY-MM-DD` from a date input; blank or malformed means no bound."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def result_color(result: Optional[str]) -> str:
    return RESULT_COLORS.get(result or "", DEFAULT_RESULT_COLOR)


def filter_frame(df: pl.DataFrame, filters: TableFilters) -> pl.DataFrame:
    """Apply every active filter to the frame."""
    predicates: list[pl.Expr] = []

    for attr, col in _TEXT_FILTERS.items():
        term = getattr(filters, attr).strip().lower()
        if term:
            predicates.append(
                pl.col(col).cast(pl.Utf8).fill_null("").str.to_lowercase().str.contains(term, literal=True)
            )

    for attr, col in _SET_FILTERS.items():
        values = getattr(filters, attr)
        if values:
            predicates.append(pl.col(col).is_in(sorted(values)).fill_null(False))

    # Date window only constrains rows that have a harvest date
    if filters.harvest_date_start is not None:
        predicates.append(
            pl.col("harvest_date").is_null() | (pl.col("harvest_date") >= filters.harvest_date_start)
        )
    if filters.harvest_date_end is not None:
        predicates.append(
            pl.col("harvest_date").is_null() | (pl.col("harvest_date") <= filters.harvest_date_end)
        )

    if not predicates:
        return df
    return df.filter(pl.all_horizontal(predicates))


def sort_frame(df: pl.DataFrame, key: str, descending: bool = False) -> pl.DataFrame:
    """Stable sort with nulls last in both directions; text compares case-insensitively."""
    expr = pl.col(key)
    if df.schema[key] == pl.Utf8:
        expr = expr.str.to_lowercase()
    return df.sort(expr, descending=descending, nulls_last=True, maintain_order=True)


class SampleTable:
    """Filterable, sortable, paginated view over processed samples."""

    def __init__(self, items_per_page: int = ITEMS_PER_PAGE):
        self.items_per_page = items_per_page
        self.filters = TableFilters()
        self.sort_key: Optional[str] = None
        self.sort_direction = "asc"
        self.current_page = 1
        self._all = pl.DataFrame()
        self._filtered = pl.DataFrame()

    @property
    def filtered(self) -> pl.DataFrame:
        return self._filtered

    @property
    def count(self) -> int:
        return self._filtered.height

    @property
    def total_pages(self) -> int:
        return ceil(self._filtered.height / self.items_per_page) if self._filtered.height else 0

    def update(self, df: pl.DataFrame) -> None:
        """Replace the data, keeping the active filters and sort."""
        self._all = df
        self.refresh()

    def refresh(self) -> None:
        """Re-run filters and the current sort; back to page 1."""
        if not self._all.columns:
            self._filtered = self._all
        else:
            self._filtered = filter_frame(self._all, self.filters)
            if self.sort_key is not None:
                self._filtered = sort_frame(self._filtered, self.sort_key,
                                            descending=self.sort_direction == "desc")
        self.current_page = 1

    def set_filter(self, name: str, value: Any) -> None:
        if not hasattr(self.filters, name):
            raise KeyError(f"Unknown table filter: {name}")
        setattr(self.filters, name, value)
        self.refresh()

    def toggle_option(self, name: str, value: str, checked: bool) -> None:
        """Checkbox change in one of the FILTER_GROUPS."""
        if name not in _SET_FILTERS:
            raise KeyError(f"Unknown checkbox filter: {name}")
        selected = set(getattr(self.filters, name))
        if checked:
            selected.add(value)
        else:
            selected.discard(value)
        self.set_filter(name, selected)

    def clear_filters(self) -> None:
        self.filters.clear()
        self.refresh()

    def sort_by(self, key: str) -> None:
        """Sort by column; the same key again flips the direction."""
        if key not in {c.key for c in COLUMNS}:
            raise KeyError(f"Unknown sort column: {key}")
        if self.sort_key == key:
            self.sort_direction = "desc" if self.sort_direction == "asc" else "asc"
        else:
            self.sort_key = key
            self.sort_direction = "asc"
        self.refresh()

    def next_page(self) -> bool:
        if self.current_page < self.total_pages:
            self.current_page += 1
            return True
        return False

    def previous_page(self) -> bool:
        if self.current_page > 1:
            self.current_page -= 1
            return True
        return False

    def page_info(self) -> str:
        return f"Page {self.current_page} of {self.total_pages}"

    def page_rows(self) -> list[dict[str, Any]]:
        """Display-ready rows for the current page."""
        start = (self.current_page - 1) * self.items_per_page
        page = self._filtered.slice(start, self.items_per_page)

        rows = []
        for rec in page.iter_rows(named=True):
            row: dict[str, Any] = {}
            for col in COLUMNS:
                if col.key == "harvest_date":
                    row[col.key] = format_date(rec.get("harvest_date"), rec.get("collection_date"))
                else:
                    value = rec.get(col.key)
                    row[col.key] = value if value not in (None, "") else "-"
            row["result_color"] = result_color(rec.get("result"))
            rows.append(row)
        return rows

    def filter_options(self) -> dict[str, list[str]]:
        """Sorted distinct values for each checkbox filter group."""
        options: dict[str, list[str]] = {}
        for attr, col in _SET_FILTERS.items():
            if col not in self._all.columns:
                options[attr] = []
                continue
            values = self._all.get_column(col).drop_nulls().unique().to_list()
            options[attr] = sorted(v for v in values if v)
        return options
