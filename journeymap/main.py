from __future__ import annotations

import os
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from journeymap.agents.destination_normalizer import destinations_from_text, group_by_day
from journeymap.boundary import BoundaryResolver, cache_key
from journeymap.orchestrator import ChatSession, orchestrate_chat_turn
from journeymap.schemas import (
    BoundaryRequest,
    ChatRequest,
    Destination,
    DestinationsResponse,
    ExtractRequest,
)

app = FastAPI(title="Journey Map API")

# Browser front-ends (Vite dev server, static builds) call this API directly.
# Operators can narrow the list via JOURNEYMAP_ALLOWED_ORIGINS.
raw_origins = os.getenv("JOURNEYMAP_ALLOWED_ORIGINS") or "*"
allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allowed_origins:
    allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One boundary cache for the life of the process, shared by every request.
resolver = BoundaryResolver()


@app.post("/api/chat", response_model=DestinationsResponse)
async def api_chat(body: ChatRequest) -> DestinationsResponse:
    """Ask the assistant and return its prose plus normalized destinations."""
    session = ChatSession()
    turn = await orchestrate_chat_turn(session, body.message)
    if turn is None:
        raise HTTPException(status_code=422, detail="message must not be blank")
    if turn.error:
        raise HTTPException(status_code=502, detail=turn.error)
    return DestinationsResponse(
        text=turn.text,
        kind=turn.kind,
        destinations=turn.destinations,
        days=list(group_by_day(turn.destinations)),
    )


@app.post("/api/extract", response_model=DestinationsResponse)
async def api_extract(body: ExtractRequest) -> DestinationsResponse:
    text, payload, points = destinations_from_text(body.text)
    return DestinationsResponse(
        text=text,
        kind=payload.kind if payload else None,
        destinations=points,
        days=list(group_by_day(points)),
    )


@app.post("/api/boundary")
async def api_boundary(body: BoundaryRequest) -> Dict[str, Any]:
    point = Destination.model_validate(
        {"day": body.day, "name": body.name, "lat": body.lat, "lng": body.lng, "geojson": body.geojson}
    )
    key = cache_key(point.day, body.index, point.name)
    geometry = await resolver.resolve(point, key)
    return {"key": list(key), "geometry": geometry}
