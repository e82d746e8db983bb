"""Unit tests for aggregator.py — merge, dedup, filters, marker buckets."""

import pytest

from aggregator import (
    ALL,
    FOOD,
    PRIVATE,
    PUBLIC,
    WIFI,
    FilterSet,
    dedupe,
    has_restroom_signal,
    mappable_locations,
    marker_category,
    matches_filter,
    merge_locations,
    recompute,
    visible_locations,
)
from data_service import AppState
from location_record import LocationRecord


def rec(name, **fields):
    return LocationRecord(location=name, **fields)


# =========================================================================
# Merge / dedup
# =========================================================================

class TestDedupe:
    def test_first_occurrence_wins(self):
        sheet = [rec("A", privacy="Public")]
        api = [rec("a", privacy="Private", is_api_source=True)]

        merged = merge_locations(sheet, api)

        assert len(merged) == 1
        assert merged[0].location == "A"
        assert merged[0].is_api_source is False

    def test_whitespace_and_case_ignored(self):
        assert len(dedupe([rec("Cafe X"), rec("  cafe x ")])) == 1

    def test_order_preserved(self):
        merged = merge_locations([rec("B"), rec("A")], [rec("C", is_api_source=True)])
        assert [r.location for r in merged] == ["B", "A", "C"]

    def test_duplicates_within_one_source(self):
        assert [r.location for r in dedupe([rec("A"), rec("B"), rec("a")])] == ["A", "B"]

    def test_show_api_false_excludes_api(self):
        merged = merge_locations([rec("A")], [rec("B", is_api_source=True)], show_api=False)
        assert [r.location for r in merged] == ["A"]

    def test_api_only_when_sheet_empty(self):
        merged = merge_locations([], [rec("B", is_api_source=True)])
        assert [r.location for r in merged] == ["B"]

    def test_recompute_publishes_to_state(self):
        state = AppState(sheet_locations=[rec("A")], api_locations=[rec("B", is_api_source=True)])
        recompute(state)
        assert [r.location for r in state.locations] == ["A", "B"]

        state.show_api_locations = False
        recompute(state)
        assert [r.location for r in state.locations] == ["A"]


# =========================================================================
# Filter predicates
# =========================================================================

class TestPredicates:
    def test_food_tag(self):
        assert matches_filter(rec("A", tags="Food, Coffee"), FOOD)
        assert not matches_filter(rec("A", tags="Restroom"), FOOD)

    @pytest.mark.parametrize("fields", [
        {"wifi_code": "secret"},
        {"tags": "WiFi"},
        {"notes": "free wifi upstairs"},
    ])
    def test_wifi_signals(self, fields):
        assert matches_filter(rec("A", **fields), WIFI)

    def test_blank_wifi_code_is_not_wifi(self):
        assert not matches_filter(rec("A", wifi_code="  "), WIFI)

    def test_restroom_signal(self):
        assert has_restroom_signal(rec("A", privacy="Private"))
        assert has_restroom_signal(rec("A", tags="Restroom"))
        assert has_restroom_signal(rec("A", notes="Bathroom in back"))
        assert not has_restroom_signal(rec("A", tags="Food"))

    @pytest.mark.parametrize("privacy", ["Public", "exposed", "PUBLIC"])
    def test_public_privacy_values(self, privacy):
        assert matches_filter(rec("A", privacy=privacy), PUBLIC)
        assert not matches_filter(rec("A", privacy=privacy), PRIVATE)

    def test_private_needs_restroom_signal(self):
        assert matches_filter(rec("A", privacy="Private"), PRIVATE)
        assert matches_filter(rec("A", tags="Restroom"), PRIVATE)
        assert not matches_filter(rec("A", tags="Food"), PRIVATE)

    def test_unknown_filter_is_permissive(self):
        assert matches_filter(rec("A"), "parking")


# =========================================================================
# FilterSet
# =========================================================================

class TestFilterSet:
    def test_default_is_all(self):
        assert FilterSet.default().names == frozenset({ALL})
        assert FilterSet.default().is_all

    def test_all_shows_everything(self):
        assert FilterSet.default().matches(rec("A"))

    def test_toggle_adds_and_clears_all(self):
        fs = FilterSet.default().toggle(FOOD)
        assert fs.names == frozenset({FOOD})

    def test_toggle_removes(self):
        fs = FilterSet.from_names([FOOD, WIFI]).toggle(WIFI)
        assert fs.names == frozenset({FOOD})

    def test_toggle_last_filter_off_resets_to_all(self):
        assert FilterSet.from_names([FOOD]).toggle(FOOD) == FilterSet.default()

    def test_toggle_all_resets(self):
        assert FilterSet.from_names([FOOD, WIFI]).toggle(ALL) == FilterSet.default()

    def test_toggle_is_immutable(self):
        fs = FilterSet.default()
        fs.toggle(FOOD)
        assert fs.names == frozenset({ALL})

    def test_from_names_normalizes(self):
        assert FilterSet.from_names([" Food ", "", "WIFI"]).names == frozenset({FOOD, WIFI})
        assert FilterSet.from_names([]) == FilterSet.default()
        assert FilterSet.from_names(None) == FilterSet.default()

    def test_conjunction(self):
        fs = FilterSet.from_names([FOOD, WIFI])
        assert fs.matches(rec("A", tags="Food, WiFi"))
        assert not fs.matches(rec("B", tags="Food"))

    def test_unknown_name_does_not_narrow(self):
        fs = FilterSet.from_names([FOOD, "parking"])
        assert fs.matches(rec("A", tags="Food"))

    def test_visible_locations_never_mutates_input(self):
        records = [rec("A", tags="Food"), rec("B")]
        visible = visible_locations(records, FilterSet.from_names([FOOD]))
        assert [r.location for r in visible] == ["A"]
        assert len(records) == 2

    def test_to_list_sorted(self):
        assert FilterSet.from_names([WIFI, FOOD]).to_list() == [FOOD, WIFI]


# =========================================================================
# Rendering helpers
# =========================================================================

class TestRendering:
    def test_mappable_excludes_missing_and_zero_coords(self):
        records = [
            rec("A", lat_long="44.05, -123.09"),
            rec("B"),
            rec("C", lat_long="0, 0"),
            rec("D", lat_long="garbage"),
        ]
        assert [r.location for r in mappable_locations(records)] == ["A"]

    @pytest.mark.parametrize("fields,expected", [
        ({"tags": "Food, WiFi", "privacy": "Public"}, "food"),
        ({"tags": "WiFi", "privacy": "Public"}, "wifi"),
        ({"privacy": "Public"}, "restroom"),
        ({"tags": "Restroom", "privacy": "Private"}, "restroom"),
        ({"privacy": "Private"}, "private"),
        ({}, "private"),
    ])
    def test_marker_category(self, fields, expected):
        assert marker_category(rec("A", **fields)) == expected
