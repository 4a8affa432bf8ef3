# journeymap/llm.py
import os
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from journeymap.errors import AssistantError, AssistantUnavailableError
from journeymap.log import get_logger

logger = get_logger(__name__)

# Load .env file if present
load_dotenv()

DEFAULT_MODEL = os.getenv("JOURNEYMAP_CHAT_MODEL", "gpt-4o-mini")

SYSTEM_PROMPT = """You are a friendly, knowledgeable Vietnam travel guide with a feel for its culture and history.
Answer travel questions warmly and concisely, in the user's language.
Keep the places of one day close to each other so the route is logical.
Make sure you pick the place the user means; many places share a name.
If asked about trips outside Vietnam, politely decline and suggest a Vietnam trip instead.
If asked about something other than travel or places, politely steer back to travel.

At the very END of your reply (and only there) append map data as JSON.

For a travel itinerary, use:
[
  {
    "day": 1,
    "destinations": [
      {"name": "Place name", "lat": number, "lng": number, "desc": "Short description", "source": "Link to read more (prefer Wikipedia)"}
    ]
  }
]

For information about a single place (a city, a landmark), use:
{"name": "Place name", "lat": number, "lng": number, "desc": "Description", "source": "Link to read more (prefer Wikipedia)"}
and then suggest asking for an itinerary.
"""

_client: Optional[OpenAI] = None


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise AssistantUnavailableError("OPENAI_API_KEY is not set")
        _client = OpenAI(api_key=api_key)
    return _client


def call_assistant(message: str, model: str = DEFAULT_MODEL) -> str:
    """Send one user message with the fixed guide instruction; return the raw reply."""
    client = _get_client()
    logger.info("Invoking assistant model %s (%d chars)", model, len(message))
    try:
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ],
            temperature=0.4,
        )
    except OpenAIError as exc:
        raise AssistantError(str(exc)) from exc

    if not resp.choices:
        raise AssistantError("assistant returned no choices")
    content = resp.choices[0].message.content or ""
    logger.debug("Assistant reply: %d chars", len(content))
    return content
