"""Client for the Torn game API."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .config import (
    ATTACK_PAGE_DELAY,
    ATTACK_PAGE_LIMIT,
    NEWS_PAGE_LIMIT,
    TORN_API_BASE,
    TORN_API_KEY,
)
from .models import NewsEntry, RosterMember


logger = logging.getLogger(__name__)


class TornApiError(Exception):
    """Raised when the game API cannot be reached or returns an unusable payload."""


def parse_roster(payload: Dict[str, Any]) -> List[RosterMember]:
    """Build roster members from a members payload (list or id-keyed mapping)."""
    members = payload.get("members")
    if members is None:
        raise TornApiError("Members payload has no 'members' field")

    if isinstance(members, dict):
        rows = []
        for member_id, data in members.items():
            rows.append({"id": member_id, **data})
    else:
        rows = members

    try:
        return [RosterMember.from_api(row) for row in rows]
    except (KeyError, TypeError, ValueError) as e:
        raise TornApiError(f"Malformed member entry: {e}") from e


def find_opponent(payload: Dict[str, Any], our_faction_id: int) -> Optional[int]:
    """Return the opponent faction id of an ongoing ranked war, if any."""
    ranked = (payload.get("wars") or {}).get("ranked")
    if not ranked or ranked.get("end"):
        return None
    for faction in ranked.get("factions") or []:
        if faction.get("id") != our_faction_id:
            return faction.get("id")
    return None


def parse_news(payload: Dict[str, Any]) -> List[NewsEntry]:
    entries = []
    for item in payload.get("news") or []:
        entries.append(NewsEntry(
            id=str(item.get("id", "")),
            text=item.get("text") or "",
            timestamp=int(item.get("timestamp") or 0),
        ))
    return entries


class TornClient:
    """Thin async wrapper around the read-only endpoints the bot uses."""

    def __init__(self, api_key: str = TORN_API_KEY, session: Optional[aiohttp.ClientSession] = None,
                 base_url: str = TORN_API_BASE):
        self.api_key = api_key
        self.base_url = base_url
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={
                'Authorization': f'ApiKey {self.api_key}',
                'accept': 'application/json',
            })
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _get(self, path_or_url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON document, raising TornApiError on any failure."""
        url = path_or_url if path_or_url.startswith("http") else f"{self.base_url}{path_or_url}"
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status >= 400:
                    raise TornApiError(f"API request failed: {resp.status} {resp.reason}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TornApiError(f"API request to {url} failed: {e}") from e
        except ValueError as e:
            raise TornApiError(f"API returned invalid JSON from {url}") from e

        if not isinstance(data, dict):
            raise TornApiError(f"Unexpected payload type from {url}")
        if "error" in data:
            error = data["error"] or {}
            raise TornApiError(f"Torn API error: {error.get('code')} - {error.get('error')}")
        return data

    async def fetch_roster(self, faction_id: int) -> List[RosterMember]:
        data = await self._get(f"/faction/{faction_id}/members", {"striptags": "true"})
        return parse_roster(data)

    async def fetch_own_members(self) -> List[RosterMember]:
        data = await self._get("/faction/members", {"striptags": "true"})
        return parse_roster(data)

    async def fetch_active_opponent(self, our_faction_id: int) -> Optional[int]:
        data = await self._get(f"/faction/{our_faction_id}/wars")
        return find_opponent(data, our_faction_id)

    async def fetch_ranked_war(self, our_faction_id: int, war_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Return a specific ranked war, or the most recent one."""
        data = await self._get(f"/faction/{our_faction_id}/rankedwars")
        wars = data.get("rankedwars") or []
        if not wars:
            return None
        if war_id is not None:
            return next((war for war in wars if war.get("id") == war_id), None)
        return wars[0]

    async def fetch_attacks(self, start: int, end: int) -> List[Dict[str, Any]]:
        """Fetch every attack between two timestamps, following cursor links."""
        attacks: List[Dict[str, Any]] = []
        url = f"{self.base_url}/faction/attacksfull"
        params: Optional[Dict[str, Any]] = {
            "limit": ATTACK_PAGE_LIMIT, "sort": "DESC", "from": start, "to": end,
        }

        while True:
            logger.debug(f"Fetching attacks: {url}")
            data = await self._get(url, params)
            page = data.get("attacks") or []
            if not page:
                break
            attacks.extend(page)
            logger.info(f"Fetched {len(page)} attacks. Total so far: {len(attacks)}")

            next_url = ((data.get("_metadata") or {}).get("links") or {}).get("prev")
            if not next_url:
                break
            url, params = next_url, None
            await asyncio.sleep(ATTACK_PAGE_DELAY)

        return attacks

    async def fetch_news(self, category: str = "depositFunds", limit: int = 300) -> List[NewsEntry]:
        """Fetch up to `limit` news entries, newest first."""
        result: List[NewsEntry] = []
        seen = set()
        last_timestamp = None

        while len(result) < limit:
            params = {"striptags": "true", "limit": NEWS_PAGE_LIMIT, "sort": "DESC", "cat": category}
            if last_timestamp is not None:
                params["to"] = last_timestamp

            data = await self._get("/faction/news", params)
            page = parse_news(data)
            # Pages overlap at the boundary timestamp
            fresh = [entry for entry in page if (entry.id, entry.timestamp) not in seen]
            if not fresh:
                break
            seen.update((entry.id, entry.timestamp) for entry in fresh)
            result.extend(fresh)
            last_timestamp = page[-1].timestamp

            if not ((data.get("_metadata") or {}).get("links") or {}).get("prev"):
                break

        return result[:limit]

    async def fetch_currency(self) -> Dict[str, Any]:
        return await self._get("/faction", {"selections": "currency", "striptags": "true"})

    async def fetch_donations(self) -> Dict[str, Any]:
        data = await self._get("/faction", {"selections": "donations", "striptags": "true"})
        return data.get("donations") or {}
