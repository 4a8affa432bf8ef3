# journeymap/orchestrator.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from journeymap.agents.destination_normalizer import group_by_day, normalize_payload
from journeymap.agents.payload_extractor import extract_structured_data
from journeymap.errors import AssistantError
from journeymap.llm import call_assistant  # module-level so tests can patch it
from journeymap.log import get_logger
from journeymap.schemas import Destination, PayloadKind

logger = get_logger(__name__)


@dataclass
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str
    is_error: bool = False


@dataclass
class ChatSession:
    """Transcript plus the destinations of the latest reply that carried any."""

    messages: List[ChatMessage] = field(default_factory=list)
    destinations: List[Destination] = field(default_factory=list)
    error: Optional[str] = None
    loading: bool = False

    @property
    def days(self) -> Dict[int, List[Destination]]:
        return group_by_day(self.destinations)


@dataclass
class ChatTurn:
    text: str
    kind: Optional[PayloadKind] = None
    destinations: List[Destination] = field(default_factory=list)
    error: Optional[str] = None


async def orchestrate_chat_turn(session: ChatSession, message: str) -> Optional[ChatTurn]:
    """Run one exchange: ask the assistant, pull out map data, update the session.

    Assistant failures are not raised; they end up in the transcript as an
    error entry and in ``ChatTurn.error``.
    """
    text = (message or "").strip()
    if not text or session.loading:
        return None

    session.messages.append(ChatMessage(role="user", content=text))
    session.loading = True
    session.error = None
    try:
        reply = call_assistant(text)
    except AssistantError as exc:
        logger.exception("Assistant call failed: %s", exc)
        session.error = str(exc)
        session.messages.append(ChatMessage(role="assistant", content=f"Error: {exc}", is_error=True))
        return ChatTurn(text="", error=str(exc))
    finally:
        session.loading = False

    result = extract_structured_data(reply)
    points = normalize_payload(result.structured_data)
    session.messages.append(ChatMessage(role="assistant", content=result.cleaned_text))

    if points:
        session.destinations = points
        logger.info("Session now holds %d destination(s) across %d day(s)", len(points), len(session.days))
    elif result.structured_data is None:
        logger.info("Assistant reply carried no map data")

    kind = result.structured_data.kind if result.structured_data else None
    return ChatTurn(text=result.cleaned_text, kind=kind, destinations=points)
