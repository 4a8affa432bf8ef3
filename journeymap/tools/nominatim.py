from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import os

import httpx

from journeymap.log import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://nominatim.openstreetmap.org"

_OSM_TYPE_LETTERS = {"relation": "R", "way": "W", "node": "N"}


def _split_codes(raw: str) -> List[str]:
    return [code.strip().lower() for code in raw.split(",") if code.strip()]


@dataclass
class SearchPolicy:
    country_codes: Sequence[str] = field(
        default_factory=lambda: _split_codes(os.getenv("JOURNEYMAP_COUNTRY_CODES", "vn"))
    )
    limit: int = field(default_factory=lambda: int(os.getenv("JOURNEYMAP_SEARCH_LIMIT", "5")))
    timeout: float = 10.0


def osm_type_letter(osm_type: Any) -> str:
    kind = str(osm_type or "").lower()
    return _OSM_TYPE_LETTERS.get(kind, kind[:1].upper())


class NominatimClient:
    """
    Read-only client for a Nominatim-compatible geocoder: name search with
    polygon output and the by-id details lookup.
    """

    def __init__(
        self,
        policy: Optional[SearchPolicy] = None,
        *,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.policy = policy or SearchPolicy()
        self.base_url = (base_url or os.getenv("NOMINATIM_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.user_agent = user_agent or os.getenv("NOMINATIM_USER_AGENT", "journeymap/1.0")
        self._client = client

    @property
    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{path}"
        if self._client is not None:
            response = await self._client.get(url, params=params, headers=self.headers)
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self.policy.timeout) as client:
            response = await client.get(url, params=params, headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Search ``query`` within the policy's countries.

        Returns only the object entries of the response; anything else the
        service sends back is treated as no results.
        """
        params: Dict[str, Any] = {
            "q": query,
            "format": "jsonv2",
            "polygon_geojson": 1,
            "limit": self.policy.limit,
        }
        if self.policy.country_codes:
            params["countrycodes"] = ",".join(self.policy.country_codes)

        data = await self._get_json("search", params)
        if not isinstance(data, list):
            logger.warning("Unexpected search payload for %r: %s", query, type(data).__name__)
            return []
        results = [item for item in data if isinstance(item, dict)]
        logger.debug("Search %r returned %d candidate(s)", query, len(results))
        return results

    async def details(self, osm_type: Any, osm_id: Any) -> Dict[str, Any]:
        params = {
            "osmtype": osm_type_letter(osm_type),
            "osmid": osm_id,
            "format": "json",
            "polygon_geojson": 1,
        }
        data = await self._get_json("details", params)
        return data if isinstance(data, dict) else {}
