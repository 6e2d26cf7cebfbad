"""Tests for the sample table model: filters, sorting, paging and display rows."""

from __future__ import annotations

from datetime import date

import pytest

from process_records import process_records
from sample_table import (
    COLUMNS,
    DEFAULT_RESULT_COLOR,
    FILTER_GROUPS,
    RESULT_COLORS,
    SampleTable,
    format_date,
    parse_date_input,
    result_color,
)


def sample(i, **overrides):
    rec = {
        "OBJECTID": i,
        "PERMITYEAR": 2024,
        "Specimen_No": f"S-{i:03d}",
        "CountyName": "Franklin",
        "RESULT": "Not Detected",
        "HARVEST_DATE": "11/10/2024",
        "CollectionDate": "20241112",
        "TelecheckID": f"T{i}",
        "Deer_Sex": "M",
        "Deer_Age": "A",
        "SampleType": "Lymph Node",
        "Publish": "Y",
    }
    rec.update(overrides)
    return rec


@pytest.fixture
def table():
    raw = [
        sample(1, CountyName="Franklin", RESULT="Positive", Deer_Sex="F"),
        sample(2, CountyName="adair", RESULT="Pending", HARVEST_DATE=None),
        sample(3, CountyName="Boone", HARVEST_DATE="10/01/2024"),
        sample(4, CountyName=None, RESULT="Sample Unsuitable", HARVEST_DATE=None, CollectionDate=None),
    ]
    t = SampleTable()
    t.update(process_records(raw, current_year=2024))
    return t


class TestFormatting:
    def test_format_date_prefers_harvest(self):
        assert format_date(date(2024, 11, 10), date(2024, 11, 12)) == "11/10/24"

    def test_format_date_marks_collection_fallback(self):
        assert format_date(None, date(2024, 11, 12)) == "11/12/24*"

    def test_format_date_missing(self):
        assert format_date(None, None) == "-"

    def test_parse_date_input(self):
        assert parse_date_input("2024-11-10") == date(2024, 11, 10)
        assert parse_date_input("") is None
        assert parse_date_input(None) is None
        assert parse_date_input("11/10/2024") is None

    def test_result_color(self):
        assert result_color("Positive") == RESULT_COLORS["Positive"]
        assert result_color("Whatever") == DEFAULT_RESULT_COLOR
        assert result_color(None) == DEFAULT_RESULT_COLOR


class TestFilters:
    def test_text_filter_is_case_insensitive_substring(self, table):
        table.set_filter("county", "AD")
        assert table.filtered["specimen_no"].to_list() == ["S-002"]

    def test_text_filter_skips_null_values(self, table):
        table.set_filter("county", "o")
        assert sorted(table.filtered["specimen_no"].to_list()) == ["S-003"]

    def test_set_filter(self, table):
        table.set_filter("result", {"Positive", "Unfit"})
        assert table.filtered["specimen_no"].to_list() == ["S-001", "S-004"]

    def test_filters_combine(self, table):
        table.set_filter("result", {"Negative", "Positive"})
        table.set_filter("sex", {"Male"})
        assert table.filtered["specimen_no"].to_list() == ["S-003"]

    def test_date_window_keeps_rows_without_harvest_date(self, table):
        table.set_filter("harvest_date_start", date(2024, 11, 1))
        assert table.filtered["specimen_no"].to_list() == ["S-001", "S-002", "S-004"]

    def test_date_window_end(self, table):
        table.set_filter("harvest_date_end", date(2024, 10, 31))
        assert table.filtered["specimen_no"].to_list() == ["S-002", "S-003", "S-004"]

    def test_unknown_filter(self, table):
        with pytest.raises(KeyError):
            table.set_filter("colour", "red")

    def test_clear_filters(self, table):
        table.set_filter("telecheck", "t1")
        assert table.count == 1
        table.clear_filters()
        assert table.count == 4

    def test_toggle_option(self, table):
        table.toggle_option("result", "Positive", True)
        table.toggle_option("result", "Pending", True)
        assert table.filters.result == {"Positive", "Pending"}
        assert table.filtered["specimen_no"].to_list() == ["S-001", "S-002"]

        table.toggle_option("result", "Positive", False)
        assert table.filtered["specimen_no"].to_list() == ["S-002"]

    def test_toggle_option_rejects_text_filters(self, table):
        with pytest.raises(KeyError):
            table.toggle_option("county", "Adair", True)

    def test_date_inputs(self, table):
        table.set_filter("harvest_date_start", parse_date_input("2024-11-01"))
        table.set_filter("harvest_date_end", parse_date_input("2024-11-30"))
        assert table.filtered["specimen_no"].to_list() == ["S-001", "S-002", "S-004"]

    def test_clear_filters_resets_every_control(self, table):
        table.set_filter("specimen", "S-00")
        table.toggle_option("sex", "Female", True)
        table.set_filter("harvest_date_end", date(2024, 10, 1))
        table.clear_filters()
        assert table.filters.specimen == ""
        assert table.filters.sex == set()
        assert table.filters.harvest_date_end is None
        assert table.count == 4

    def test_filter_groups_match_options(self, table):
        assert [name for name, _ in FILTER_GROUPS] == list(table.filter_options())

    def test_filter_options(self, table):
        options = table.filter_options()
        assert options["result"] == ["Negative", "Pending", "Positive", "Unfit"]
        assert options["sex"] == ["Female", "Male"]
        assert options["sample_type"] == ["Lymph Node"]


class TestSorting:
    def test_sort_toggles_direction(self, table):
        table.sort_by("county_name")
        assert table.filtered["county_name"].to_list() == ["adair", "Boone", "Franklin", None]
        table.sort_by("county_name")
        assert table.sort_direction == "desc"
        assert table.filtered["county_name"].to_list() == ["Franklin", "Boone", "adair", None]

    def test_new_key_resets_to_ascending(self, table):
        table.sort_by("county_name")
        table.sort_by("county_name")
        table.sort_by("specimen_no")
        assert table.sort_direction == "asc"
        assert table.filtered["specimen_no"].to_list() == ["S-001", "S-002", "S-003", "S-004"]

    def test_dates_sort_nulls_last(self, table):
        table.sort_by("harvest_date")
        assert table.filtered["specimen_no"].to_list() == ["S-003", "S-001", "S-002", "S-004"]

    def test_sort_survives_update(self, table):
        table.sort_by("county_name")
        table.sort_by("county_name")
        table.update(table.filtered)
        assert table.sort_direction == "desc"
        assert table.filtered["county_name"].to_list()[0] == "Franklin"

    def test_unknown_sort_column(self, table):
        with pytest.raises(KeyError):
            table.sort_by("object_id")


class TestPaging:
    def test_pages_of_twenty(self):
        t = SampleTable()
        t.update(process_records([sample(i) for i in range(45)], current_year=2024))

        assert t.total_pages == 3
        assert len(t.page_rows()) == 20
        assert t.page_info() == "Page 1 of 3"
        assert t.previous_page() is False

        assert t.next_page() and t.next_page()
        assert t.next_page() is False
        assert len(t.page_rows()) == 5
        assert t.page_info() == "Page 3 of 3"

    def test_filter_returns_to_first_page(self):
        t = SampleTable()
        t.update(process_records([sample(i) for i in range(45)], current_year=2024))
        t.next_page()
        t.set_filter("specimen", "S-0")
        assert t.current_page == 1

    def test_empty_table(self):
        t = SampleTable()
        t.update(process_records([], current_year=2024))
        assert t.count == 0
        assert t.total_pages == 0
        assert t.page_rows() == []
        assert t.next_page() is False


class TestRows:
    def test_display_rows(self, table):
        rows = table.page_rows()
        assert [c.key for c in COLUMNS] == [k for k in rows[0] if k != "result_color"]

        by_specimen = {r["specimen_no"]: r for r in rows}
        assert by_specimen["S-001"]["harvest_date"] == "11/10/24"
        assert by_specimen["S-001"]["result_color"] == RESULT_COLORS["Positive"]
        assert by_specimen["S-002"]["harvest_date"] == "11/12/24*"
        assert by_specimen["S-004"]["harvest_date"] == "-"
        assert by_specimen["S-004"]["county_name"] == "-"
        assert by_specimen["S-004"]["result"] == "Unfit"
