import asyncio
from typing import Any, Dict, List

import httpx
import pytest

from journeymap.boundary import (
    BoundaryResolver,
    InMemoryBoundaryCache,
    cache_key,
    choose_candidate,
    source_id,
)
from journeymap.errors import BoundaryCacheError
from journeymap.schemas import Destination

POLYGON = {"type": "Polygon", "coordinates": [[[108.0, 16.0], [108.1, 16.0], [108.1, 16.1], [108.0, 16.0]]]}


class FakeGeocoder:
    def __init__(self, results=None, details=None, search_error=None, details_error=None):
        self.results: List[Dict[str, Any]] = results or []
        self.details_payload: Dict[str, Any] = details or {}
        self.search_error = search_error
        self.details_error = details_error
        self.search_calls: List[str] = []
        self.details_calls: List[tuple] = []

    async def search(self, query: str):
        self.search_calls.append(query)
        if self.search_error:
            raise self.search_error
        return self.results

    async def details(self, osm_type, osm_id):
        self.details_calls.append((osm_type, osm_id))
        if self.details_error:
            raise self.details_error
        return self.details_payload


def _point(name="Son Tra", day=1, **extra) -> Destination:
    return Destination.model_validate({"name": name, "day": day, "lat": 16.1, "lng": 108.25, **extra})


def test_embedded_polygon_skips_network():
    async def run() -> None:
        geocoder = FakeGeocoder()
        resolver = BoundaryResolver(geocoder, InMemoryBoundaryCache())
        point = _point(geojson=POLYGON)

        geometry = await resolver.resolve(point, cache_key(1, 0, point.name))

        assert geometry == POLYGON
        assert geocoder.search_calls == []

    asyncio.run(run())


def test_embedded_feature_collection_prefers_area_feature():
    async def run() -> None:
        collection = {
            "type": "FeatureCollection",
            "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [108.0, 16.0]}},
                {"type": "Feature", "geometry": POLYGON},
            ],
        }
        geocoder = FakeGeocoder()
        resolver = BoundaryResolver(geocoder)

        geometry = await resolver.resolve(_point(geojson=collection), cache_key(1, 0, "x"))

        assert geometry == POLYGON
        assert geocoder.search_calls == []

    asyncio.run(run())


def test_embedded_point_falls_through_to_search():
    async def run() -> None:
        geocoder = FakeGeocoder(results=[{"geojson": POLYGON}])
        resolver = BoundaryResolver(geocoder)
        point = _point(geojson={"type": "Point", "coordinates": [108.0, 16.0]})

        assert await resolver.resolve(point, cache_key(1, 0, point.name)) == POLYGON
        assert geocoder.search_calls == ["Son Tra"]

    asyncio.run(run())


def test_choose_candidate_preference_order():
    with_polygon = {"class": "place", "geojson": POLYGON}
    area_class = {"class": "natural", "geojson": {"type": "Point", "coordinates": [0, 0]}}
    small = {"class": "amenity", "boundingbox": ["16.0", "16.01", "108.0", "108.01"]}
    large = {"class": "highway", "boundingbox": ["16.0", "17.0", "108.0", "109.0"]}

    assert choose_candidate([area_class, with_polygon]) is with_polygon
    assert choose_candidate([small, area_class]) is area_class
    assert choose_candidate([small, large]) is large
    assert choose_candidate([{"class": "x"}, {"class": "y"}]) == {"class": "x"}
    assert choose_candidate([]) is None


def test_details_lookup_used_when_search_has_no_polygon():
    async def run() -> None:
        geocoder = FakeGeocoder(
            results=[{"class": "boundary", "osm_type": "relation", "osm_id": 123}],
            details={"geometry": POLYGON},
        )
        resolver = BoundaryResolver(geocoder)

        geometry = await resolver.resolve(_point(), cache_key(1, 0, "Son Tra"))

        assert geometry == POLYGON
        assert geocoder.details_calls == [("relation", 123)]

    asyncio.run(run())


def test_bounding_box_rectangle_fallback_normalizes_order():
    async def run() -> None:
        geocoder = FakeGeocoder(
            results=[{"class": "place", "osm_type": "node", "osm_id": 9, "boundingbox": ["16.2", "16.0", "108.3", "108.1"]}],
            details_error=httpx.ConnectError("down"),
        )
        resolver = BoundaryResolver(geocoder)

        geometry = await resolver.resolve(_point(), cache_key(1, 0, "Son Tra"))

        assert geometry["type"] == "Polygon"
        ring = geometry["coordinates"][0]
        assert ring[0] == [108.1, 16.0]
        assert ring[2] == [108.3, 16.2]
        assert ring[0] == ring[-1]

    asyncio.run(run())


def test_network_failure_degrades_to_none_and_is_cached():
    async def run() -> None:
        geocoder = FakeGeocoder(search_error=httpx.ConnectTimeout("timeout"))
        cache = InMemoryBoundaryCache()
        resolver = BoundaryResolver(geocoder, cache)
        key = cache_key(1, 0, "Son Tra")

        assert await resolver.resolve(_point(), key) is None
        assert await resolver.resolve(_point(), key) is None
        assert key in cache
        assert geocoder.search_calls == ["Son Tra"]

    asyncio.run(run())


def test_same_name_on_different_days_is_cached_separately():
    async def run() -> None:
        first = {"type": "Polygon", "coordinates": [[[1, 1], [2, 1], [2, 2], [1, 1]]]}
        second = {"type": "Polygon", "coordinates": [[[3, 3], [4, 3], [4, 4], [3, 3]]]}
        cache = InMemoryBoundaryCache()
        resolver = BoundaryResolver(FakeGeocoder(), cache)

        day_one = _point(name="Old Quarter", day=1, geojson=first)
        day_two = _point(name="Old Quarter", day=2, geojson=second)
        key_one = cache_key(day_one.day, 0, day_one.name)
        key_two = cache_key(day_two.day, 0, day_two.name)

        assert await resolver.resolve(day_one, key_one) == first
        assert await resolver.resolve(day_two, key_two) == second
        assert key_one != key_two
        assert cache.get(key_one) == first
        assert cache.get(key_two) == second
        assert len(cache) == 2

    asyncio.run(run())


def test_cache_rejects_second_write():
    cache = InMemoryBoundaryCache()
    key = cache_key(1, 0, "Hue")
    cache.put(key, None)

    with pytest.raises(BoundaryCacheError):
        cache.put(key, POLYGON)


def test_cache_key_and_source_id():
    key = cache_key(3, 1, "Phố cổ Hội An")
    assert key == (3, 1, "pho-co-hoi-an")
    assert source_id(key) == "outline-3-1-pho-co-hoi-an"
