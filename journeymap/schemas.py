from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from journeymap.log import get_logger
from journeymap.tools.geometry import BBox, normalize_lat_lng, to_number

logger = get_logger(__name__)

# Alternate spellings accepted from the assistant, first non-null value wins.
FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "day": ("day",),
    "name": ("name", "title"),
    "lat": ("lat", "latitude"),
    "lng": ("lng", "longitude", "lon"),
    "desc": ("desc", "description"),
    "source": ("source", "sourceUrl", "url", "wiki"),
    "budget": ("budget", "cost", "estimatedBudget", "dayBudget", "price"),
    "embedded_geometry": ("embedded_geometry", "embeddedGeometry", "geojson", "geometry", "boundary"),
}


def first_present(record: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _clamp(value: float, limit: float, label: str, name: str) -> float:
    if -limit <= value <= limit:
        return value
    clamped = max(-limit, min(limit, value))
    logger.warning("%s %.6f out of range for '%s'; clamped to %.1f", label, value, name, clamped)
    return clamped


# ------- Itinerary models -------
class Destination(BaseModel):
    """One canonical point of the itinerary.

    Raw assistant records are accepted as-is: alternate key spellings are
    mapped, numbers are coerced, and transposed coordinates are swapped back
    before the frozen model is built.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    day: int = Field(default=1, ge=1)
    name: str = ""
    lat: float = Field(default=0.0, ge=-90, le=90)
    lng: float = Field(default=0.0, ge=-180, le=180)
    desc: Optional[str] = None
    source: Optional[str] = None
    budget: Optional[Any] = None
    embedded_geometry: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _from_record(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        values = {name: first_present(data, keys) for name, keys in FIELD_KEYS.items()}

        name = values["name"]
        name = "" if name is None else str(name)
        lat, lng = normalize_lat_lng(values["lat"], values["lng"])
        desc = values["desc"]
        source = values["source"]
        geometry = values["embedded_geometry"]

        return {
            "day": max(1, int(to_number(values["day"] if values["day"] is not None else 1))),
            "name": name,
            "lat": _clamp(lat, 90, "Latitude", name),
            "lng": _clamp(lng, 180, "Longitude", name),
            "desc": None if desc is None else str(desc),
            "source": source if isinstance(source, str) else None,
            "budget": values["budget"],
            "embedded_geometry": geometry if isinstance(geometry, dict) else None,
        }


class PayloadKind(str, Enum):
    ITINERARY = "itinerary"
    PLACE_LIST = "place_list"
    SINGLE_PLACE = "single_place"


@dataclass(frozen=True)
class ExtractedPayload:
    kind: PayloadKind
    data: Any


@dataclass(frozen=True)
class ExtractionResult:
    cleaned_text: str
    structured_data: Optional[ExtractedPayload] = None


# ------- View state -------
DaySelection = Union[int, Literal["all"]]


@dataclass
class ViewState:
    all_points: List[Destination] = field(default_factory=list)
    selected_day: DaySelection = "all"
    loading: bool = False
    combined_bound: Optional[BBox] = None
    generation: int = 0


# ------- API models -------
class ChatRequest(BaseModel):
    message: str


class ExtractRequest(BaseModel):
    text: str


class BoundaryRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    day: int = 1
    index: int = 0
    name: str
    lat: Any = None
    lng: Any = None
    geojson: Optional[Dict[str, Any]] = None


class DestinationsResponse(BaseModel):
    text: str
    kind: Optional[PayloadKind] = None
    destinations: List[Destination] = Field(default_factory=list)
    days: List[int] = Field(default_factory=list)
