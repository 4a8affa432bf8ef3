"""Boundary resolution for itinerary destinations.

A destination's outline comes from, in order: the geometry the assistant
embedded in the record, a polygon returned by the geocoder's search, the
geocoder's details lookup for the best candidate, and finally a rectangle
built from that candidate's bounding box. Whatever is found, ``None``
included, is stored once per cache key and reused for the life of the view.
"""
from __future__ import annotations

from typing import Any, Dict, Iterator, Optional, Protocol, Sequence, Tuple

import httpx

from journeymap.errors import BoundaryCacheError
from journeymap.log import get_logger
from journeymap.schemas import Destination
from journeymap.tools.geometry import (
    Geometry,
    bbox_area,
    bbox_to_polygon,
    is_area,
    is_polygon,
    parse_boundingbox,
    slugify,
    unwrap_geojson,
)
from journeymap.tools.nominatim import NominatimClient

logger = get_logger(__name__)

CacheKey = Tuple[int, int, str]

AREA_CLASSES: Tuple[str, ...] = ("tourism", "natural", "landuse", "leisure", "historic")


def cache_key(day: int, index: int, name: str) -> CacheKey:
    """Compound key: the same name on another day or position never collides."""
    return int(day), int(index), slugify(name)


def source_id(key: CacheKey) -> str:
    day, index, slug = key
    return f"outline-{day}-{index}-{slug}"


class BoundaryCache(Protocol):
    def __contains__(self, key: object) -> bool: ...

    def __len__(self) -> int: ...

    def get(self, key: CacheKey) -> Optional[Geometry]: ...

    def put(self, key: CacheKey, geometry: Optional[Geometry]) -> None: ...


class InMemoryBoundaryCache:
    """Append-only dict-backed cache; a second write to a key is an error."""

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, Optional[Geometry]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheKey]:
        return iter(self._entries)

    def get(self, key: CacheKey) -> Optional[Geometry]:
        return self._entries.get(key)

    def put(self, key: CacheKey, geometry: Optional[Geometry]) -> None:
        if key in self._entries:
            raise BoundaryCacheError(f"boundary for {key!r} already cached")
        self._entries[key] = geometry


def embedded_geometry(destination: Destination) -> Optional[Geometry]:
    """Return the record's own outline if it carries an area or line geometry."""
    geometry = unwrap_geojson(destination.embedded_geometry)
    return geometry if is_area(geometry) else None


def choose_candidate(candidates: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the search result most likely to describe an area.

    Inline polygons first, then area-like OSM classes, then the widest
    bounding box, then simply the first result.
    """
    if not candidates:
        return None
    for candidate in candidates:
        if is_polygon(candidate.get("geojson")):
            return candidate
    for candidate in candidates:
        if str(candidate.get("class", "")) in AREA_CLASSES:
            return candidate

    best: Optional[Dict[str, Any]] = None
    best_area = 0.0
    for candidate in candidates:
        area = bbox_area(parse_boundingbox(candidate.get("boundingbox")))
        if area > best_area:
            best, best_area = candidate, area
    return best or candidates[0]


def details_polygon(details: Dict[str, Any]) -> Optional[Geometry]:
    for key in ("geometry", "geojson", "polygon_geojson"):
        if is_polygon(details.get(key)):
            return details[key]
    return None


class BoundaryResolver:
    def __init__(
        self,
        geocoder: Optional[NominatimClient] = None,
        cache: Optional[BoundaryCache] = None,
    ):
        self.geocoder = geocoder or NominatimClient()
        self.cache: BoundaryCache = cache if cache is not None else InMemoryBoundaryCache()

    async def resolve(self, destination: Destination, key: CacheKey) -> Optional[Geometry]:
        """Return the outline for ``destination``; network trouble yields ``None``."""
        if key in self.cache:
            return self.cache.get(key)

        geometry = embedded_geometry(destination)
        if geometry is None:
            geometry = await self._lookup(destination.name)

        # Another pass may have filled the key while we were waiting on the network.
        if key in self.cache:
            return self.cache.get(key)
        self.cache.put(key, geometry)
        logger.debug("Cached boundary for %s: %s", key, geometry.get("type") if geometry else None)
        return geometry

    async def _lookup(self, name: str) -> Optional[Geometry]:
        if not name.strip():
            return None
        try:
            candidates = await self.geocoder.search(name)
        except (httpx.HTTPError, ValueError):
            logger.warning("Boundary search failed for %r", name, exc_info=True)
            return None

        candidate = choose_candidate(candidates)
        if candidate is None:
            logger.info("No geocoder candidates for %r", name)
            return None
        if is_polygon(candidate.get("geojson")):
            return candidate["geojson"]

        geometry = await self._details(candidate, name)
        if geometry is not None:
            return geometry

        bbox = parse_boundingbox(candidate.get("boundingbox"))
        if bbox is None:
            return None
        logger.debug("Falling back to bounding box rectangle for %r", name)
        return bbox_to_polygon(bbox)

    async def _details(self, candidate: Dict[str, Any], name: str) -> Optional[Geometry]:
        osm_type = candidate.get("osm_type")
        osm_id = candidate.get("osm_id")
        if not osm_type or not osm_id:
            return None
        try:
            details = await self.geocoder.details(osm_type, osm_id)
        except (httpx.HTTPError, ValueError):
            logger.warning("Details lookup failed for %r (%s %s)", name, osm_type, osm_id, exc_info=True)
            return None
        return details_polygon(details)
