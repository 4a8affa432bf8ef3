"""Pure coordinate and GeoJSON helpers.

Nothing in this module touches the network or the map engine, so the
coercion rules and bounding-box arithmetic can be exercised directly.
"""
from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

BBox = Tuple[float, float, float, float]  # (min_lng, min_lat, max_lng, max_lat)
Geometry = Dict[str, Any]

POLYGON_TYPES = frozenset({"Polygon", "MultiPolygon"})
AREA_TYPES = frozenset({"Polygon", "MultiPolygon", "LineString", "MultiLineString"})

# Rough lat/lng bands for Vietnam, used to spot transposed coordinates.
LAT_BAND = (6.0, 30.0)
LNG_BAND = (95.0, 120.0)

EARTH_CIRCUMFERENCE_M = 40075000.0

_THOUSANDS_COMMA = re.compile(r",(?=\d{3}(?!\d))")
_NON_NUMERIC = re.compile(r"[^0-9.\-]+")
_NUMERIC_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def to_number(value: Any) -> float:
    """Coerce a loosely formatted number to ``float``; garbage becomes ``0.0``.

    * ``"10,5"`` -> ``10.5`` (a lone comma is the decimal separator)
    * ``"1,234.56"`` -> ``1234.56`` (with a dot present, commas group thousands)
    * ``"1.234,56"`` -> ``1.234`` (a comma that is not a thousands group ends the number)
    * ``"abc"`` -> ``0.0``
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    text = str(value).strip()
    if "." in text and "," in text:
        text = _THOUSANDS_COMMA.sub("", text).split(",", 1)[0]
    else:
        text = text.replace(",", ".")
    text = _NON_NUMERIC.sub("", text)

    match = _NUMERIC_PREFIX.match(text)
    if not match:
        return 0.0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


def _in_band(value: float, band: Tuple[float, float]) -> bool:
    return band[0] <= value <= band[1]


def fix_swapped_lat_lng(lat: float, lng: float) -> Tuple[float, float]:
    """Return ``(lat, lng)``, swapped when the pair looks transposed."""
    if abs(lat) > 90 and abs(lng) <= 90:
        return lng, lat
    if _in_band(lng, LAT_BAND) and _in_band(lat, LNG_BAND):
        return lng, lat
    return lat, lng


def normalize_lat_lng(raw_lat: Any, raw_lng: Any) -> Tuple[float, float]:
    return fix_swapped_lat_lng(to_number(raw_lat), to_number(raw_lng))


def slugify(name: Any) -> str:
    decomposed = unicodedata.normalize("NFKD", str(name or ""))
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "-", ascii_only.lower()).strip("-")


def unwrap_geojson(obj: Any) -> Optional[Geometry]:
    """Pull a bare geometry out of a geometry, Feature or FeatureCollection."""
    if not isinstance(obj, dict):
        return None
    kind = obj.get("type")
    if kind == "Feature":
        return unwrap_geojson(obj.get("geometry"))
    if kind == "FeatureCollection" or (kind is None and isinstance(obj.get("features"), list)):
        features = [f for f in obj.get("features") or [] if isinstance(f, dict)]
        geometries = [f.get("geometry") for f in features if isinstance(f.get("geometry"), dict)]
        for geometry in geometries:
            if geometry.get("type") in AREA_TYPES:
                return geometry
        return geometries[0] if geometries else None
    if isinstance(kind, str):
        return obj
    return None


def is_area(geometry: Optional[Geometry]) -> bool:
    return bool(geometry) and geometry.get("type") in AREA_TYPES


def is_polygon(geometry: Any) -> bool:
    return isinstance(geometry, dict) and geometry.get("type") in POLYGON_TYPES


def geometry_bbox(geometry: Optional[Geometry]) -> Optional[BBox]:
    """Bounding box of a GeoJSON geometry, or ``None`` when it has no coordinates."""
    if not isinstance(geometry, dict):
        return None
    kind = geometry.get("type")
    xs: List[float] = []
    ys: List[float] = []

    def visit(coords: Any) -> None:
        if not isinstance(coords, (list, tuple)) or not coords:
            return
        if isinstance(coords[0], (int, float)) and len(coords) >= 2 and isinstance(coords[1], (int, float)):
            xs.append(float(coords[0]))
            ys.append(float(coords[1]))
            return
        for child in coords:
            visit(child)

    if kind == "GeometryCollection":
        boxes = [geometry_bbox(g) for g in geometry.get("geometries") or []]
        return merge_bboxes(b for b in boxes if b)
    if kind in AREA_TYPES or kind in ("Point", "MultiPoint"):
        visit(geometry.get("coordinates"))
    else:
        return None
    if not xs:
        return None
    return min(xs), min(ys), max(xs), max(ys)


def expand_bbox(bbox: BBox, factor: float = 0.06, min_pad: float = 0.01) -> BBox:
    """Grow ``bbox`` by ``factor`` per axis; degenerate axes get ``min_pad`` degrees."""
    min_x, min_y, max_x, max_y = bbox
    dx = max_x - min_x
    dy = max_y - min_y
    pad_x = min_pad if dx == 0 else dx * factor
    pad_y = min_pad if dy == 0 else dy * factor
    return min_x - pad_x, min_y - pad_y, max_x + pad_x, max_y + pad_y


def merge_bboxes(boxes: Iterable[Optional[BBox]]) -> Optional[BBox]:
    merged: Optional[BBox] = None
    for box in boxes:
        if box is None:
            continue
        if merged is None:
            merged = box
            continue
        merged = (
            min(merged[0], box[0]),
            min(merged[1], box[1]),
            max(merged[2], box[2]),
            max(merged[3], box[3]),
        )
    return merged


def point_bbox(lng: float, lat: float, delta: float = 0.008) -> BBox:
    return lng - delta, lat - delta, lng + delta, lat + delta


def points_bbox(points: Iterable[Tuple[float, float]]) -> Optional[BBox]:
    """Bounding box of ``(lng, lat)`` pairs."""
    return merge_bboxes((lng, lat, lng, lat) for lng, lat in points)


def make_circle(lng: float, lat: float, radius_m: float = 2000.0, steps: int = 64) -> Dict[str, Any]:
    """Approximate a circle of ``radius_m`` metres as a closed Polygon feature."""
    deg_per_metre = 360.0 / EARTH_CIRCUMFERENCE_M
    lat_scale = math.cos(math.radians(lat)) or 1e-12
    ring: List[List[float]] = []
    for step in range(steps):
        theta = (step / steps) * math.pi * 2
        d_lat = radius_m * math.cos(theta) * deg_per_metre
        d_lng = radius_m * math.sin(theta) * deg_per_metre / lat_scale
        ring.append([lng + d_lng, lat + d_lat])
    ring.append(list(ring[0]))
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


def parse_boundingbox(values: Any) -> Optional[BBox]:
    """Read a Nominatim ``boundingbox`` (``[south, north, west, east]``, often strings)."""
    if not isinstance(values, Sequence) or isinstance(values, str) or len(values) != 4:
        return None
    try:
        south, north, west, east = (float(v) for v in values)
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(v) for v in (south, north, west, east)):
        return None
    return min(west, east), min(south, north), max(west, east), max(south, north)


def bbox_area(bbox: Optional[BBox]) -> float:
    if bbox is None:
        return 0.0
    return abs((bbox[2] - bbox[0]) * (bbox[3] - bbox[1]))


def bbox_to_polygon(bbox: BBox) -> Geometry:
    min_lng, min_lat, max_lng, max_lat = bbox
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [min_lng, min_lat],
                [max_lng, min_lat],
                [max_lng, max_lat],
                [min_lng, max_lat],
                [min_lng, min_lat],
            ]
        ],
    }
