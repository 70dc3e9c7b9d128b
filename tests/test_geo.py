from __future__ import annotations

import pytest

from roadwatch.utils.geo import covering_prefixes, encode_geohash, haversine

from conftest import DELHI


def test_haversine_zero_for_coincident_points() -> None:
    assert haversine(DELHI, DELHI) == 0.0


def test_haversine_is_symmetric() -> None:
    a, b = (28.6139, 77.2090), (19.0760, 72.8777)
    assert haversine(a, b) == pytest.approx(haversine(b, a))


def test_haversine_one_millidegree_latitude() -> None:
    # 0.001° of latitude is ~111 m everywhere
    assert haversine((28.6139, 77.2090), (28.6149, 77.2090)) == pytest.approx(111.2, abs=0.5)


def test_geohash_known_value() -> None:
    assert encode_geohash(57.64911, 10.40744, 11) == "u4pruydqqvj"


def test_geohash_prefix_stable() -> None:
    lat, lon = DELHI
    assert encode_geohash(lat, lon, 5) == encode_geohash(lat, lon, 7)[:5]
    assert len(encode_geohash(lat, lon)) == 7


def test_geohash_deterministic() -> None:
    assert encode_geohash(*DELHI, 7) == encode_geohash(*DELHI, 7)


def test_covering_prefixes_contains_own_cell() -> None:
    prefixes = covering_prefixes(*DELHI, radius_m=25)
    assert encode_geohash(*DELHI, 5) in prefixes
    assert prefixes == sorted(set(prefixes))


def test_covering_prefixes_spans_cell_edge() -> None:
    # longitude 0 is a cell edge at every precision
    west = covering_prefixes(10.0, -0.0001, radius_m=25)
    east = covering_prefixes(10.0, 0.0001, radius_m=25)
    assert encode_geohash(10.0, 0.0001, 5) in west
    assert encode_geohash(10.0, -0.0001, 5) in east
