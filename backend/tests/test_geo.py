import math

import pytest

from fieldtrack.geo import (
    compute_distance_km,
    distance_km,
    haversine_km,
    is_out_of_area,
    is_within_radius,
    normalize_lat_lon,
    parse_coordinate,
)

BANGKOK = (13.7563, 100.5018)
NEARBY = (13.7564, 100.5019)


def test_parse_coordinate_accepts_optional_whitespace():
    assert parse_coordinate("13.7563, 100.5018") == BANGKOK
    assert parse_coordinate("13.7563,100.5018") == BANGKOK
    assert parse_coordinate("  13.7563 ,  100.5018 ") == BANGKOK


@pytest.mark.parametrize("text", ["", None, "abc", "13.7", "1, 2, 3", "nan, 100", "inf, 10", "91, 200"])
def test_parse_coordinate_rejects_invalid_without_raising(text):
    assert parse_coordinate(text) is None


def test_parse_coordinate_swaps_longitude_first_pairs():
    assert parse_coordinate("100.5018, 13.7563") == BANGKOK


def test_normalize_lat_lon_from_separate_cells():
    assert normalize_lat_lon(13.7563, "100.5018") == BANGKOK
    assert normalize_lat_lon("", 100.5) is None
    assert normalize_lat_lon(math.inf, 100.5) is None


def test_distance_between_close_points():
    assert distance_km(BANGKOK, NEARBY) == pytest.approx(0.02, abs=0.005)
    assert haversine_km(BANGKOK, NEARBY) == pytest.approx(0.0155, abs=0.0005)


def test_distance_to_self_is_zero():
    assert distance_km(BANGKOK, BANGKOK) == 0


def test_distance_is_rounded_to_three_decimals():
    far = (13.80, 100.60)
    value = distance_km(BANGKOK, far)
    assert value == round(value, 3)
    assert value > 10


def test_radius_uses_full_precision():
    assert is_within_radius(BANGKOK, NEARBY, 0.5)
    assert not is_within_radius(BANGKOK, NEARBY, 0.015)
    assert is_within_radius(BANGKOK, NEARBY, 0.016)


def test_compute_distance_km_accepts_text_and_pairs():
    assert compute_distance_km("13.7563, 100.5018", NEARBY) == distance_km(BANGKOK, NEARBY)
    assert compute_distance_km("13.7563, 100.5018", "bad") is None
    assert compute_distance_km(None, NEARBY) is None


def test_is_out_of_area():
    assert is_out_of_area("13.7563, 100.5018", "13.80, 100.60", 0.5)
    assert not is_out_of_area(BANGKOK, NEARBY, 0.5)
    assert not is_out_of_area(None, NEARBY, 0.5)
    assert not is_out_of_area(BANGKOK, "", 0.001)
