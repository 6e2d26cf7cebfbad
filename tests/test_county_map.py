"""Tests for the county map model."""

from __future__ import annotations

import pytest

from county_map import (
    METRICS,
    MISSOURI_COUNTIES,
    NO_DATA_COLOR,
    CountyMap,
    interpolate_ramp,
)
from process_records import process_records


def samples(*specs):
    raw = [
        {"OBJECTID": i, "Specimen_No": f"S-{i}", "CountyName": county, "RESULT": result, "PERMITYEAR": 2024}
        for i, (county, result) in enumerate(specs)
    ]
    return process_records(raw, current_year=2024)


@pytest.fixture
def county_map():
    m = CountyMap()
    m.update(samples(
        ("Franklin", "Positive"),
        ("Franklin", "Not Detected"),
        ("Franklin", "Not Detected"),
        ("Franklin", "Pending"),
        ("Adair", "Not Detected"),
    ))
    return m


class TestRamp:
    def test_endpoints(self):
        ramp = ("#000000", "#808080", "#ffffff")
        assert interpolate_ramp(ramp, 0.0) == "#000000"
        assert interpolate_ramp(ramp, 0.5) == "#808080"
        assert interpolate_ramp(ramp, 1.0) == "#ffffff"

    def test_between_stops(self):
        assert interpolate_ramp(("#000000", "#ffffff"), 0.5) == "#808080"

    def test_clamped(self):
        ramp = ("#000000", "#ffffff")
        assert interpolate_ramp(ramp, -1.0) == "#000000"
        assert interpolate_ramp(ramp, 2.0) == "#ffffff"


class TestCountyMap:
    def test_county_list(self):
        assert len(MISSOURI_COUNTIES) == 115
        assert CountyMap().counties == MISSOURI_COUNTIES

    def test_domain_follows_metric(self, county_map):
        assert county_map.max_value == 4
        county_map.set_metric("notDetected")
        assert county_map.max_value == 2
        county_map.set_metric("positive")
        assert county_map.max_value == 1

    def test_unknown_metric(self, county_map):
        with pytest.raises(KeyError):
            county_map.set_metric("rate")

    def test_fill_colors(self, county_map):
        ramp = METRICS["total"].ramp
        assert county_map.fill_for("Franklin") == ramp[-1]
        assert county_map.fill_for("Boone") == NO_DATA_COLOR
        # lookup is case-insensitive
        assert county_map.fill_for("FRANKLIN") == ramp[-1]

    def test_zero_domain_uses_lightest_color(self, county_map):
        county_map.set_metric("unsuitable")
        assert county_map.max_value == 0
        assert county_map.fill_for("Adair") == METRICS["unsuitable"].ramp[0]

    def test_tooltip(self, county_map):
        assert county_map.tooltip_for("Franklin") == (
            "Franklin\nTotal Samples: 4\nPending: 1\nPositive: 1\nNot Detected: 2"
        )
        assert county_map.tooltip_for("Boone") == "Boone\nNo CWD samples"
        assert county_map.tooltip_for(None) == "Unknown\nNo CWD samples"

    def test_legend(self, county_map):
        county_map.set_metric("positive")
        legend = county_map.legend()
        assert legend.label == "Positive"
        assert legend.min_color == METRICS["positive"].ramp[0]
        assert legend.max_color == METRICS["positive"].ramp[-1]
        assert legend.max_value == 1

    def test_empty_data(self):
        m = CountyMap()
        m.update(samples())
        assert m.max_value == 0
        assert m.fill_for("Adair") == NO_DATA_COLOR


class TestSelection:
    def test_select_toggles_and_notifies(self):
        seen = []
        m = CountyMap(on_select=seen.append)
        assert m.select("Adair") == "Adair"
        assert m.select("Adair") is None
        m.select("Boone")
        m.clear_selection()
        assert seen == ["Adair", None, "Boone", None]

    def test_select_other_county_switches(self):
        m = CountyMap()
        m.select("Adair")
        assert m.select("Boone") == "Boone"
        assert m.selected_county == "Boone"
