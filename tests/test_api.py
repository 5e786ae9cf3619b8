"""Tests for the game API client and its payload parsers."""

from __future__ import annotations

import pytest

from faction.api import TornApiError, TornClient, find_opponent, parse_news, parse_roster


class ScriptedClient(TornClient):
    """Client whose HTTP layer replays canned payloads."""

    def __init__(self, responses):
        super().__init__(api_key="test")
        self.responses = list(responses)
        self.requests = []

    async def _get(self, path_or_url, params=None):
        self.requests.append((path_or_url, params))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def news_page(*entries, more=True):
    payload = {"news": [{"id": entry_id, "text": f"entry {entry_id}", "timestamp": ts} for entry_id, ts in entries]}
    if more:
        payload["_metadata"] = {"links": {"prev": "https://api.torn.com/v2/faction/news?to=1"}}
    return payload


def test_parse_roster_from_list():
    payload = {"members": [
        {"id": 5, "name": "Five", "level": 12, "status": {"state": "Hospital", "until": 1234}, "position": "Member"},
    ]}

    [member] = parse_roster(payload)

    assert (member.id, member.name, member.level) == (5, "Five", 12)
    assert member.hospitalized and member.until == 1234
    assert member.position == "Member"


def test_parse_roster_from_id_keyed_mapping():
    payload = {"members": {"7": {"name": "Seven", "level": 3, "status": {"state": "Okay"}}}}

    [member] = parse_roster(payload)

    assert member.id == 7
    assert not member.hospitalized
    assert member.until == 0


@pytest.mark.parametrize("payload", [
    {},
    {"members": [{"name": "No id"}]},
    {"members": [{"id": "abc"}]},
])
def test_parse_roster_rejects_malformed_payloads(payload):
    with pytest.raises(TornApiError):
        parse_roster(payload)


def test_find_opponent_only_for_ongoing_war():
    ongoing = {"wars": {"ranked": {"end": 0, "factions": [{"id": 1}, {"id": 2}]}}}
    finished = {"wars": {"ranked": {"end": 99, "factions": [{"id": 1}, {"id": 2}]}}}

    assert find_opponent(ongoing, 1) == 2
    assert find_opponent(ongoing, 2) == 1
    assert find_opponent(finished, 1) is None
    assert find_opponent({"wars": {"ranked": None}}, 1) is None
    assert find_opponent({}, 1) is None


def test_parse_news_defaults_missing_fields():
    entries = parse_news({"news": [{"id": 3}, {"id": "x", "text": "hello", "timestamp": "10"}]})

    assert [(e.id, e.text, e.timestamp) for e in entries] == [("3", "", 0), ("x", "hello", 10)]
    assert parse_news({}) == []


@pytest.mark.asyncio
async def test_fetch_news_follows_pages_and_drops_overlap():
    client = ScriptedClient([
        news_page(("a", 30), ("b", 20)),
        news_page(("b", 20), ("c", 10)),
        news_page(more=False),
    ])

    entries = await client.fetch_news(limit=10)

    assert [e.id for e in entries] == ["a", "b", "c"]
    assert "to" not in client.requests[0][1]
    assert client.requests[1][1]["to"] == 20
    assert client.requests[2][1]["to"] == 10


@pytest.mark.asyncio
async def test_fetch_news_stops_at_limit():
    client = ScriptedClient([news_page(("a", 30), ("b", 20), ("c", 10))])

    entries = await client.fetch_news(limit=2)

    assert [e.id for e in entries] == ["a", "b"]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_fetch_news_stops_without_prev_link():
    client = ScriptedClient([news_page(("a", 30), more=False)])

    assert [e.id for e in await client.fetch_news(limit=50)] == ["a"]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_fetch_attacks_follows_cursor(monkeypatch):
    monkeypatch.setattr("faction.api.ATTACK_PAGE_DELAY", 0)
    next_url = "https://api.torn.com/v2/faction/attacksfull?to=50"
    client = ScriptedClient([
        {"attacks": [{"id": 1}, {"id": 2}], "_metadata": {"links": {"prev": next_url}}},
        {"attacks": [{"id": 3}], "_metadata": {"links": {"prev": None}}},
    ])

    attacks = await client.fetch_attacks(100, 200)

    assert [a["id"] for a in attacks] == [1, 2, 3]
    assert client.requests[0][1]["from"] == 100 and client.requests[0][1]["to"] == 200
    assert client.requests[1] == (next_url, None)


@pytest.mark.asyncio
async def test_fetch_ranked_war_by_id_or_latest():
    wars = {"rankedwars": [{"id": 9}, {"id": 8}]}
    client = ScriptedClient([wars, wars, wars, {"rankedwars": []}])

    assert (await client.fetch_ranked_war(1))["id"] == 9
    assert (await client.fetch_ranked_war(1, 8))["id"] == 8
    assert await client.fetch_ranked_war(1, 7) is None
    assert await client.fetch_ranked_war(1) is None


@pytest.mark.asyncio
async def test_roster_fetch_propagates_api_errors():
    client = ScriptedClient([TornApiError("Torn API error: 2 - Incorrect key")])

    with pytest.raises(TornApiError):
        await client.fetch_roster(123)
