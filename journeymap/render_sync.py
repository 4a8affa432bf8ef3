"""Keep a map engine in step with the selected itinerary day.

The engine itself is a black box behind ``MapEngine``; this module only
decides what to draw. A pass clears every outline and marker it owns, then
walks the active destinations one at a time: marker, popup, boundary
lookup, outline, bounds. Passes are stamped with a generation number and a
pass that has been overtaken stops touching the engine at its next await.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from journeymap.boundary import BoundaryResolver, cache_key, source_id
from journeymap.log import get_logger
from journeymap.schemas import DaySelection, Destination, ViewState
from journeymap.tools.geometry import (
    BBox,
    Geometry,
    expand_bbox,
    geometry_bbox,
    is_area,
    make_circle,
    merge_bboxes,
    normalize_lat_lng,
    point_bbox,
    points_bbox,
)

logger = get_logger(__name__)

PALETTE: Tuple[str, ...] = (
    "#ff4d4f",
    "#ff7a45",
    "#f59e0b",
    "#10b981",
    "#06b6d4",
    "#3b82f6",
    "#8b5cf6",
    "#ec4899",
)

DEFAULT_CENTER: Tuple[float, float] = (108.2772, 14.0583)  # Vietnam, (lng, lat)
DEFAULT_ZOOM = 5

OUTLINE_PREFIX = "outline-"
AREA_MARGIN = 0.06
POINT_MARGIN = 0.04
POINT_DELTA = 0.008
CIRCLE_RADIUS_M = 2000.0

FIT_PADDING = 60
FIT_MAX_ZOOM = 17
POINT_ZOOM = 16
POINTS_PADDING = 80
POINTS_MAX_ZOOM = 16


@dataclass(frozen=True)
class Popup:
    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    link_label: str = "Read more"


class MarkerHandle(Protocol):
    def remove(self) -> None: ...


class MapEngine(Protocol):
    def is_loaded(self) -> bool: ...

    def once(self, event: str, callback: Callable[..., Any]) -> None: ...

    def layer_ids(self) -> Sequence[str]: ...

    def source_ids(self) -> Sequence[str]: ...

    def add_source(self, source_id: str, data: Dict[str, Any]) -> None: ...

    def remove_source(self, source_id: str) -> None: ...

    def add_layer(self, layer: Dict[str, Any]) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...

    def add_marker(self, lng: float, lat: float, *, color: str, popup: Popup) -> MarkerHandle: ...

    def fit_bounds(self, bbox: BBox, *, padding: int, max_zoom: Optional[float] = None) -> None: ...

    def fly_to(self, center: Tuple[float, float], zoom: float) -> None: ...


def color_for(index: int) -> str:
    return PALETTE[index % len(PALETTE)]


def popup_for(point: Destination) -> Popup:
    return Popup(title=point.name, description=point.desc or None, link=point.source or None)


def _line_layer(sid: str, color: str) -> Dict[str, Any]:
    return {
        "id": f"{sid}-line",
        "type": "line",
        "source": sid,
        "layout": {"line-join": "round", "line-cap": "round"},
        "paint": {
            "line-color": color,
            "line-width": 2,
            "line-dasharray": [4, 4],
            "line-opacity": 0.95,
        },
    }


def _fill_layer(sid: str, color: str) -> Dict[str, Any]:
    return {
        "id": f"{sid}-fill",
        "type": "fill",
        "source": sid,
        "paint": {"fill-color": color, "fill-opacity": 0.06},
    }


class RenderSync:
    def __init__(
        self,
        engine: MapEngine,
        resolver: BoundaryResolver,
        *,
        on_busy: Optional[Callable[[bool], None]] = None,
        default_center: Tuple[float, float] = DEFAULT_CENTER,
        default_zoom: float = DEFAULT_ZOOM,
    ):
        self.engine = engine
        self.resolver = resolver
        self.state = ViewState()
        self.default_center = default_center
        self.default_zoom = default_zoom
        self._on_busy = on_busy
        self._markers: List[MarkerHandle] = []
        self._ready: Optional[asyncio.Future] = None
        self._closed = False

    # ---------- selection ----------
    def set_points(self, points: Sequence[Destination]) -> None:
        """Replace the destination list and reset the selection.

        A single place selects ``"all"``; an itinerary selects its first day.
        """
        self.state.all_points = list(points)
        if len(points) == 1 or not points:
            self.state.selected_day = "all"
        else:
            self.state.selected_day = points[0].day

    def select_day(self, day: DaySelection) -> None:
        self.state.selected_day = day

    def active_points(self) -> List[Destination]:
        points = self.state.all_points
        selected = self.state.selected_day
        if selected == "all":
            if len(points) <= 1:
                return list(points)
            return [p for p in points if p.day == points[0].day]
        return [p for p in points if p.day == selected]

    # ---------- lifecycle ----------
    def _set_busy(self, busy: bool) -> None:
        if self.state.loading == busy:
            return
        self.state.loading = busy
        if self._on_busy is not None:
            self._on_busy(busy)

    def _superseded(self, generation: int) -> bool:
        return self._closed or generation != self.state.generation

    async def _wait_until_loaded(self) -> None:
        if self.engine.is_loaded():
            return
        if self._ready is None:
            ready = asyncio.get_running_loop().create_future()

            def _on_load(*_args: Any) -> None:
                if not ready.done():
                    ready.set_result(None)

            self._ready = ready
            self.engine.once("load", _on_load)
            logger.debug("Map engine not loaded yet; deferring render")
        await self._ready

    def close(self) -> None:
        """Tear down: stop any running pass and remove everything it drew.

        A pass still waiting for the engine to load is released and returns
        without drawing.
        """
        self._closed = True
        self.state.generation += 1
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
        self._clear()
        self._set_busy(False)

    async def refresh(self) -> None:
        """Rebuild the map for the current selection."""
        if self._closed:
            return
        self.state.generation += 1
        generation = self.state.generation

        await self._wait_until_loaded()
        if self._superseded(generation):
            return

        self._set_busy(True)
        try:
            await self._render(generation)
        finally:
            if generation == self.state.generation:
                self._set_busy(False)

    # ---------- drawing ----------
    def _clear(self) -> None:
        for layer_id in list(self.engine.layer_ids()):
            if layer_id.startswith(OUTLINE_PREFIX):
                self.engine.remove_layer(layer_id)
        for sid in list(self.engine.source_ids()):
            if sid.startswith(OUTLINE_PREFIX):
                self.engine.remove_source(sid)
        for marker in self._markers:
            marker.remove()
        self._markers = []

    def _draw_area(self, sid: str, geometry: Geometry, color: str) -> None:
        self.engine.add_source(sid, {"type": "Feature", "properties": {}, "geometry": geometry})
        self.engine.add_layer(_fill_layer(sid, color))
        self.engine.add_layer(_line_layer(sid, color))

    def _draw_circle(self, sid: str, lng: float, lat: float, color: str) -> None:
        self.engine.add_source(sid, make_circle(lng, lat, CIRCLE_RADIUS_M))
        self.engine.add_layer(_line_layer(sid, color))

    async def _render(self, generation: int) -> None:
        self._clear()
        self.state.combined_bound = None
        active = self.active_points()

        if not active:
            self.engine.fly_to(self.default_center, self.default_zoom)
            return

        area_bounds: List[BBox] = []
        point_bounds: List[BBox] = []
        coords: List[Tuple[float, float]] = []

        for index, point in enumerate(active):
            lat, lng = normalize_lat_lng(point.lat, point.lng)
            coords.append((lng, lat))
            color = color_for(index)
            self._markers.append(self.engine.add_marker(lng, lat, color=color, popup=popup_for(point)))

            key = cache_key(point.day, index, point.name)
            geometry = await self.resolver.resolve(point, key)
            if self._superseded(generation):
                logger.debug("Render pass %d overtaken; stopping at %r", generation, point.name)
                return

            sid = source_id(key)
            if is_area(geometry):
                self._draw_area(sid, geometry, color)
                bbox = geometry_bbox(geometry)
                area_bounds.append(expand_bbox(bbox, AREA_MARGIN) if bbox else (lng, lat, lng, lat))
            else:
                self._draw_circle(sid, lng, lat, color)
                point_bounds.append(expand_bbox(point_bbox(lng, lat, POINT_DELTA), POINT_MARGIN))

        # A lone point without an area is centred directly rather than framed.
        combined = merge_bboxes(area_bounds)
        if len(active) > 1:
            combined = merge_bboxes([combined, *point_bounds])
        self.state.combined_bound = combined

        if combined is not None:
            self.engine.fit_bounds(combined, padding=FIT_PADDING, max_zoom=FIT_MAX_ZOOM)
        elif len(active) == 1:
            self.engine.fly_to(coords[0], POINT_ZOOM)
        else:
            self.engine.fit_bounds(points_bbox(coords), padding=POINTS_PADDING, max_zoom=POINTS_MAX_ZOOM)
        logger.info(
            "Rendered %d destination(s) for day %s (%d outlined)",
            len(active),
            self.state.selected_day,
            len(area_bounds),
        )

    def zoom_to_place(self, point: Destination, index: int = 0) -> None:
        """Frame one destination, using its cached outline when there is one."""
        lat, lng = normalize_lat_lng(point.lat, point.lng)
        key = cache_key(point.day, index, point.name)
        geometry = self.resolver.cache.get(key) if key in self.resolver.cache else None
        bbox = geometry_bbox(geometry) if geometry else None
        if bbox is not None:
            target = expand_bbox(bbox, AREA_MARGIN)
        else:
            target = expand_bbox(point_bbox(lng, lat, POINT_DELTA), POINT_MARGIN)
        self.engine.fit_bounds(target, padding=FIT_PADDING, max_zoom=FIT_MAX_ZOOM)
