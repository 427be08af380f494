import math

import pytest

from core.geofence import (
    GeofenceRule, coerce_number, haversine_dist, is_within_radius,
    match_zones, normalize_rules, parse_rule,
)
from tests.conftest import OFFICE, WAREHOUSE


def test_haversine_is_symmetric():
    a = haversine_dist(-6.2, 106.8, -6.21, 106.83)
    b = haversine_dist(-6.21, 106.83, -6.2, 106.8)
    assert a == pytest.approx(b)


def test_haversine_zero_for_same_point():
    assert haversine_dist(-6.2, 106.8, -6.2, 106.8) == 0


def test_thousandth_degree_of_latitude_is_about_111_meters():
    assert haversine_dist(0.0, 0.0, 0.001, 0.0) == pytest.approx(111.19, abs=0.5)


def test_boundary_is_inclusive():
    lat, lng = -6.2009, 106.8
    distance = haversine_dist(lat, lng, -6.2, 106.8)
    assert is_within_radius(lat, lng, -6.2, 106.8, distance)
    assert not is_within_radius(lat, lng, -6.2, 106.8, distance - 0.01)


@pytest.mark.parametrize("raw, expected", [
    ("-6,2088", -6.2088),
    ("106.8456", 106.8456),
    (" 150 ", 150.0),
    (75, 75.0),
])
def test_coerce_number_accepts_comma_decimals(raw, expected):
    assert coerce_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["abc", "", None, True])
def test_coerce_number_returns_nan_for_garbage(raw):
    assert math.isnan(coerce_number(raw))


def test_parse_rule_reads_string_fields():
    rule = parse_rule(WAREHOUSE)
    assert rule == GeofenceRule("2", "Warehouse", -6.2001, 106.8, 150.0)


def test_parse_rule_accepts_legacy_field_names():
    rule = parse_rule({"id": 7, "nama_divisi": "Finance", "latitude": "-6,3",
                       "longitude": "106,9", "radius_meter": "80"})
    assert rule.zone_name == "Finance"
    assert rule.radius_meters == 80.0
    assert rule.id == "7"


def test_malformed_rules_are_skipped():
    rows = [
        OFFICE,
        {"id": "3", "zone_name": "Broken", "latitude": "n/a", "longitude": 106.8, "radius_meters": 50},
        {"id": "4", "zone_name": "No radius", "latitude": -6.2, "longitude": 106.8},
    ]
    rules = normalize_rules(rows)
    assert [r.id for r in rules] == ["1"]


def test_match_zones_keeps_rule_order():
    rules = normalize_rules([WAREHOUSE, OFFICE])
    matches = match_zones(-6.20005, 106.8, rules)
    assert [r.zone_name for r in matches] == ["Warehouse", "Head Office"]


def test_match_zones_outside_every_zone():
    rules = normalize_rules([OFFICE, WAREHOUSE])
    assert match_zones(-6.3, 106.8, rules) == []


def test_match_zones_skips_rules_with_nan_values():
    rules = [GeofenceRule("x", "Bad", math.nan, 106.8, 100.0)] + normalize_rules([OFFICE])
    assert [r.id for r in match_zones(-6.2, 106.8, rules)] == ["1"]
