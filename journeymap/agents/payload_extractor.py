"""Recover the structured map payload from a free-form assistant reply."""
from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Tuple

from journeymap.log import get_logger
from journeymap.schemas import ExtractedPayload, ExtractionResult, PayloadKind

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_LEADING_LABEL = re.compile(r"^\s*(?:json|data)\s*:\s*", re.IGNORECASE)

_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = {"}", "]"}

Span = Tuple[int, int]


def classify_payload(data: Any) -> Optional[ExtractedPayload]:
    """Tag parsed JSON as an itinerary, a place list or a single place."""
    if isinstance(data, list):
        first = data[0] if data else None
        if isinstance(first, dict) and "day" in first:
            return ExtractedPayload(PayloadKind.ITINERARY, data)
        return ExtractedPayload(PayloadKind.PLACE_LIST, data)
    if isinstance(data, dict):
        if isinstance(data.get("days"), list):
            return ExtractedPayload(PayloadKind.ITINERARY, data["days"])
        return ExtractedPayload(PayloadKind.SINGLE_PLACE, data)
    return None


def parse_candidate(candidate: str) -> Optional[ExtractedPayload]:
    """Parse one candidate block, or return ``None`` if it is not a payload."""
    trimmed = _LEADING_LABEL.sub("", candidate, count=1).strip()
    if not trimmed:
        return None
    try:
        data = json.loads(trimmed)
    except ValueError as exc:
        logger.debug("Candidate rejected (%s): %.60r", exc, trimmed)
        return None
    payload = classify_payload(data)
    if payload is None:
        logger.debug("Candidate parsed to a %s, not a payload", type(data).__name__)
    return payload


def _is_escaped(text: str, idx: int) -> bool:
    backslashes = 0
    k = idx - 1
    while k >= 0 and text[k] == "\\":
        backslashes += 1
        k -= 1
    return backslashes % 2 == 1


def _region_end(text: str, start: int) -> Optional[int]:
    """Index just past the region opened at ``start``, or ``None`` if unbalanced."""
    stack = [text[start]]
    in_string = False
    for j in range(start + 1, len(text)):
        c = text[j]
        if c == '"' and not _is_escaped(text, j):
            in_string = not in_string
            continue
        if in_string:
            continue
        if c in _OPENERS:
            stack.append(c)
        elif c in _CLOSERS:
            if _OPENERS[stack.pop()] != c:
                return None
            if not stack:
                return j + 1
    return None


def find_balanced_regions(text: str) -> List[Span]:
    """Return ``(start, end)`` spans of the top-level ``{...}``/``[...]`` regions.

    Quoted strings are skipped so brackets inside them do not count. Once a
    region closes, scanning resumes after it, so nested brackets never
    produce regions of their own. An opener that never balances (or meets a
    mismatched closer) is skipped and scanning resumes at the next character.
    """
    spans: List[Span] = []
    start = 0
    while start < len(text):
        if text[start] not in _OPENERS:
            start += 1
            continue
        end = _region_end(text, start)
        if end is None:
            start += 1
            continue
        spans.append((start, end))
        start = end
    return spans


def _remove_span(text: str, span: Span) -> str:
    return (text[: span[0]] + text[span[1]:]).strip()


def extract_structured_data(text: str) -> ExtractionResult:
    """Split an assistant reply into cleaned prose and its structured payload.

    Fenced code blocks are tried first, last block first; if none parses,
    bare bracketed regions are tried, again from the end backward. The first
    candidate that parses wins and is cut out of the text. Nothing parseable
    leaves the text untouched and ``structured_data`` as ``None``.
    """
    text = text or ""

    fenced = list(_FENCED_BLOCK.finditer(text))
    for match in reversed(fenced):
        payload = parse_candidate(match.group(1))
        if payload is not None:
            logger.debug("Using fenced block at %d-%d (%s)", match.start(), match.end(), payload.kind.value)
            return ExtractionResult(_remove_span(text, match.span()), payload)

    regions = find_balanced_regions(text)
    for span in reversed(regions):
        payload = parse_candidate(text[span[0]:span[1]])
        if payload is not None:
            logger.debug("Using bare region at %d-%d (%s)", span[0], span[1], payload.kind.value)
            return ExtractionResult(_remove_span(text, span), payload)

    if fenced or regions:
        logger.info(
            "No parseable payload among %d fenced block(s) and %d bracket region(s)",
            len(fenced),
            len(regions),
        )
    return ExtractionResult(text, None)
