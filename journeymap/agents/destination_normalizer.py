"""Turn an extracted payload into canonical, day-ordered destinations."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from journeymap.agents.payload_extractor import extract_structured_data
from journeymap.log import get_logger
from journeymap.schemas import FIELD_KEYS, Destination, ExtractedPayload, PayloadKind, first_present
from journeymap.tools.geometry import to_number

logger = get_logger(__name__)


def _build(record: Dict[str, Any], day: int, day_budget: Any = None) -> Optional[Destination]:
    data = dict(record)
    data["day"] = day
    if day_budget is not None and first_present(record, FIELD_KEYS["budget"]) is None:
        data["budget"] = day_budget
    try:
        return Destination.model_validate(data)
    except ValidationError:
        logger.warning("Dropping destination record %r", record.get("name"), exc_info=True)
        return None


def _itinerary_destinations(days: Iterable[Any]) -> List[Destination]:
    points: List[Destination] = []
    for day_obj in days:
        if not isinstance(day_obj, dict):
            continue
        records = day_obj.get("destinations")
        if not isinstance(records, list):
            logger.debug("Day object without a destinations list: %s", sorted(day_obj.keys()))
            continue
        day_number = max(1, int(to_number(day_obj.get("day"))))
        day_budget = first_present(day_obj, FIELD_KEYS["budget"])
        for record in records:
            if isinstance(record, dict):
                point = _build(record, day_number, day_budget)
                if point is not None:
                    points.append(point)
    return points


def normalize_payload(payload: Optional[ExtractedPayload]) -> List[Destination]:
    """Map any payload kind onto ``Destination`` records sorted by day.

    The sort is stable, so the order within a day is the order the assistant
    listed the places in.
    """
    if payload is None:
        return []

    if payload.kind is PayloadKind.ITINERARY:
        points = _itinerary_destinations(payload.data)
    elif payload.kind is PayloadKind.PLACE_LIST:
        points = [p for p in (_build(r, 1) for r in payload.data if isinstance(r, dict)) if p is not None]
    else:
        single = _build(payload.data, 1) if isinstance(payload.data, dict) else None
        points = [single] if single is not None else []

    points.sort(key=lambda p: p.day)
    logger.info("Normalized %d destination(s) from %s payload", len(points), payload.kind.value)
    return points


def group_by_day(points: Iterable[Destination]) -> Dict[int, List[Destination]]:
    """Group destinations by day, keys ascending, order within a day kept."""
    groups: Dict[int, List[Destination]] = {}
    for point in points:
        groups.setdefault(point.day, []).append(point)
    return dict(sorted(groups.items()))


def destinations_from_text(text: str) -> tuple[str, Optional[ExtractedPayload], List[Destination]]:
    result = extract_structured_data(text)
    return result.cleaned_text, result.structured_data, normalize_payload(result.structured_data)
