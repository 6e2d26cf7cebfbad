#!/usr/bin/env python3
"""
CWD-Dash Record Processing

Normalizes raw ArcGIS attribute mappings into a typed Polars frame:
- load_raw_frame(): raw attributes → all-text frame with a fixed schema
- process_records(): renaming, code lookups, date parsing, deduplication
- deduplicate_by_specimen(): one row per specimen, latest collection date wins
- group_by_county(): per-county result counts
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import polars as pl


# Source field → output column
FIELD_MAP = {
    "OBJECTID": "object_id",
    "PERMITYEAR": "permit_year",
    "Collection_Type": "collection_type",
    "RESULT": "result",
    "CollectionDate": "collection_date",
    "HARVEST_DATE": "harvest_date",
    "SampleType": "sample_type",
    "Deer_Sex": "deer_sex",
    "Deer_Age": "deer_age",
    "County": "county",
    "CountyName": "county_name",
    "CoreArea": "core_area",
    "Township": "township",
    "Range": "range",
    "TownshipRange": "township_range",
    "Section": "section",
    "GISlabel": "gis_label",
    "Non_MDC": "non_mdc",
    "MobileApp": "mobile_app",
    "Specimen_No": "specimen_no",
    "Publish": "publish",
    "TelecheckID": "telecheck_id",
}

COLLECTION_TYPE_NAMES = {"1": "Hunter Harvest", "2": "Surveillance"}
DEER_SEX_NAMES = {"M": "Male", "F": "Female"}
DEER_AGE_NAMES = {"A": "Adult", "Y": "Young", "F": "Fawn", "U": "Unknown"}

OUTPUT_COLUMNS = [
    "object_id",
    "permit_year",
    "collection_type",
    "collection_type_name",
    "result",
    "collection_date",
    "harvest_date",
    "sample_type",
    "deer_sex",
    "deer_sex_name",
    "deer_age",
    "deer_age_name",
    "county",
    "county_name",
    "core_area",
    "township",
    "range",
    "township_range",
    "section",
    "gis_label",
    "non_mdc",
    "mobile_app",
    "specimen_no",
    "publish",
    "telecheck_id",
]

RESULT_PENDING = "Pending"
RESULT_POSITIVE = "Positive"
RESULT_NEGATIVE = "Negative"
RESULT_UNFIT = "Unfit"
RESULT_UNKNOWN = "Unknown"

_EPOCH = date(1970, 1, 1)


def _as_text(value: Any) -> Optional[str]:
    """Render a JSON scalar as text; integral floats lose their '.0'."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return str(int(value))
    return str(value)


def load_raw_frame(raw: list[dict[str, Any]]) -> pl.DataFrame:
    """Raw attribute mappings → frame of source fields, all Utf8."""
    schema = {src: pl.Utf8 for src in FIELD_MAP}
    rows = [{src: _as_text(rec.get(src)) for src in FIELD_MAP} for rec in raw if isinstance(rec, dict)]
    return pl.DataFrame(rows, schema=schema)


def _lookup(col: str, mapping: dict[str, str]) -> pl.Expr:
    return (
        pl.col(col)
        .replace_strict(mapping, default=RESULT_UNKNOWN, return_dtype=pl.Utf8)
        .fill_null(RESULT_UNKNOWN)
    )


def _normalize_result() -> pl.Expr:
    trimmed = pl.col("result").str.strip_chars()
    lowered = trimmed.str.to_lowercase()
    return (
        pl.when(pl.col("result").is_null() | (pl.col("result") == ""))
        .then(pl.lit(RESULT_UNKNOWN))
        .when(lowered == "sample unsuitable")
        .then(pl.lit(RESULT_UNFIT))
        .when(lowered == "not detected")
        .then(pl.lit(RESULT_NEGATIVE))
        .otherwise(trimmed)
    )


def _parse_collection_date() -> pl.Expr:
    """YYYYMMDD → Date; anything else → null."""
    col = pl.col("collection_date")
    return (
        pl.when(col.str.len_chars() == 8)
        .then(col.str.strptime(pl.Date, "%Y%m%d", strict=False))
        .otherwise(pl.lit(None, dtype=pl.Date))
    )


def _parse_harvest_date() -> pl.Expr:
    """MM/DD/YYYY, optionally followed by a time → Date; anything else → null."""
    col = pl.col("harvest_date")
    day_part = col.str.split(" ").list.first()
    return (
        pl.when(col.str.contains("/", literal=True))
        .then(day_part.str.strptime(pl.Date, "%m/%d/%Y", strict=False))
        .otherwise(pl.lit(None, dtype=pl.Date))
    )


def empty_frame() -> pl.DataFrame:
    """Processed schema with zero rows."""
    return normalize(load_raw_frame([]))


def normalize(raw_df: pl.DataFrame, current_year: Optional[int] = None) -> pl.DataFrame:
    """Rename, coerce and decode a raw frame. Drops rows from future permit years."""
    if current_year is None:
        current_year = date.today().year

    df = raw_df.rename(FIELD_MAP)
    df = df.with_columns(
        pl.col("object_id").cast(pl.Int64, strict=False),
        pl.col("permit_year").cast(pl.Int64, strict=False),
        _lookup("collection_type", COLLECTION_TYPE_NAMES).alias("collection_type_name"),
        _normalize_result().alias("result"),
        _parse_collection_date().alias("collection_date"),
        _parse_harvest_date().alias("harvest_date"),
        _lookup("deer_sex", DEER_SEX_NAMES).alias("deer_sex_name"),
        _lookup("deer_age", DEER_AGE_NAMES).alias("deer_age_name"),
        (pl.col("non_mdc").cast(pl.Int64, strict=False) == 1).fill_null(False).alias("non_mdc"),
        (pl.col("publish") == "Y").fill_null(False).alias("publish"),
    )

    df = df.filter(pl.col("permit_year").is_null() | (pl.col("permit_year") <= current_year))
    return df.select(OUTPUT_COLUMNS)


def deduplicate_by_specimen(df: pl.DataFrame) -> pl.DataFrame:
    """
    Keep one row per specimen number.

    Rows without a specimen number are dropped. Within a specimen the row with
    the latest collection date wins; a missing date counts as the epoch and
    ties go to the earliest row. Specimens keep their first-seen order.
    """
    keyed = df.filter(pl.col("specimen_no").is_not_null() & (pl.col("specimen_no") != ""))
    if keyed.height == 0:
        return keyed

    ranked = keyed.with_row_index("__row__").with_columns(
        pl.col("__row__").min().over("specimen_no").alias("__first__"),
        pl.col("collection_date").fill_null(_EPOCH).alias("__date__"),
    )
    winners = (
        ranked.sort(["__date__", "__row__"], descending=[True, False])
        .unique(subset="specimen_no", keep="first", maintain_order=True)
        .sort("__first__")
    )
    return winners.drop(["__row__", "__first__", "__date__"])


def process_records(
    raw: Any,
    deduplicate: bool = True,
    current_year: Optional[int] = None,
) -> pl.DataFrame:
    """Normalize raw attribute mappings, optionally deduplicating by specimen."""
    if not isinstance(raw, list):
        print("[Process] Invalid data provided to process_records")
        return empty_frame()

    processed = normalize(load_raw_frame(raw), current_year=current_year)

    if deduplicate:
        deduped = deduplicate_by_specimen(processed)
        print(f"[Process] Processed {len(raw)} records, deduplicated to {deduped.height} "
              f"(removed {processed.height - deduped.height} duplicates)")
        return deduped

    print(f"[Process] Processed {len(raw)} records (no deduplication)")
    return processed


def group_by_county(df: pl.DataFrame) -> pl.DataFrame:
    """Per-county totals and result counts, in first-seen county order."""
    result = pl.col("result")
    return (
        df.filter(pl.col("county_name").is_not_null() & (pl.col("county_name") != ""))
        .group_by("county_name", maintain_order=True)
        .agg(
            pl.len().alias("count"),
            (result == RESULT_PENDING).sum().alias("pending"),
            (result == RESULT_POSITIVE).sum().alias("positive"),
            (result == RESULT_NEGATIVE).sum().alias("negative"),
            (result == RESULT_UNFIT).sum().alias("unsuitable"),
        )
        .rename({"county_name": "county"})
    )
