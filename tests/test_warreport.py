"""Tests for tallying ranked war attacks."""

from __future__ import annotations

import pytest

from faction.models import RosterMember
from faction.warreport import build_war_report, process_attacks

OURS = 100
THEIRS = 200


def attack(attacker_id, result, defender_faction=THEIRS, respect=2.0, attacker_faction=OURS):
    return {
        "attacker": {"id": attacker_id, "faction_id": attacker_faction},
        "defender": {"id": 9000, "faction_id": defender_faction},
        "result": result,
        "respect_gain": respect,
    }


def member(member_id: int, name: str) -> RosterMember:
    return RosterMember(id=member_id, name=name, level=30, state="Okay", position="Member")


def test_every_current_member_is_listed():
    contributions, hits, assists, respect = process_attacks([], OURS, THEIRS, {1: member(1, "Idle")})

    assert contributions[1].member_name == "Idle"
    assert contributions[1].total_hits == 0
    assert (hits, assists, respect) == (0, 0, 0.0)


def test_results_are_classified():
    attacks = [
        attack(1, "Hospitalized"),
        attack(1, "Attacked"),
        attack(1, "Attacked", defender_faction=555),
        attack(1, "Mugged", respect=0),
        attack(1, "Assist", respect=0),
        attack(1, "Stalemate", respect=0),
        attack(1, "Lost", respect=0),
        attack(1, "Interrupted", respect=0),
    ]

    contributions, hits, assists, respect = process_attacks(attacks, OURS, THEIRS, {1: member(1, "Busy")})

    busy = contributions[1]
    assert busy.war_hits == 2
    assert busy.non_war_hits == 1
    assert busy.hospitalizations == 1
    assert busy.mugs == 1
    assert busy.assists == 1
    assert busy.draws == 1
    assert busy.losses == 2
    assert busy.total_hits == 8
    assert busy.respect == pytest.approx(6.0)
    assert (hits, assists) == (2, 1)
    assert respect == pytest.approx(6.0)


def test_hits_at_or_below_min_respect_count_separately():
    attacks = [attack(1, "Attacked", respect=1.5), attack(1, "Attacked", respect=1.0), attack(1, "Attacked", respect=0.5)]

    contributions, hits, _, _ = process_attacks(attacks, OURS, THEIRS, {1: member(1, "A")}, min_respect=1.0)

    assert contributions[1].war_hits == 1
    assert contributions[1].under_respect_hits == 2
    assert hits == 3


def test_other_factions_attacks_are_ignored():
    attacks = [attack(7, "Attacked", attacker_faction=THEIRS), {"attacker": None, "result": "Attacked"}]

    contributions, hits, _, _ = process_attacks(attacks, OURS, THEIRS, {})

    assert contributions == {}
    assert hits == 0


def test_member_who_left_is_included_as_unknown():
    contributions, _, _, _ = process_attacks([attack(42, "Attacked")], OURS, THEIRS, {})

    assert contributions[42].member_name == "Unknown [42]"
    assert contributions[42].war_hits == 1


def test_assists_on_other_factions_do_not_count_toward_war_total():
    attacks = [attack(1, "Assist", defender_faction=555), attack(1, "Assist")]

    contributions, _, assists, _ = process_attacks(attacks, OURS, THEIRS, {1: member(1, "A")})

    assert contributions[1].assists == 2
    assert assists == 1


class FakeClient:
    def __init__(self, war, members, attacks):
        self.war = war
        self.members = members
        self.attacks = attacks
        self.window = None

    async def fetch_ranked_war(self, faction_id, war_id=None):
        return self.war

    async def fetch_own_members(self):
        return self.members

    async def fetch_attacks(self, start, end):
        self.window = (start, end)
        return self.attacks


@pytest.mark.asyncio
async def test_build_war_report_summarises_war():
    war = {
        "id": 31,
        "start": 1000,
        "end": 5000,
        "winner": OURS,
        "factions": [
            {"id": OURS, "name": "Us", "score": 4200},
            {"id": THEIRS, "name": "Them", "score": 3100},
        ],
    }
    client = FakeClient(war, [member(1, "A"), member(2, "B")], [attack(2, "Attacked"), attack(2, "Assist", respect=0)])

    summary, contributions = await build_war_report(client, OURS, "Us", min_respect=0)

    assert client.window == (1000, 5000)
    assert (summary.war_id, summary.opponent_id, summary.opponent_name) == (31, THEIRS, "Them")
    assert (summary.our_score, summary.their_score, summary.winner) == (4200, 3100, "Us")
    assert (summary.total_hits, summary.total_assists) == (1, 1)
    assert [c.member_id for c in contributions] == [2, 1]


@pytest.mark.asyncio
async def test_build_war_report_without_war_returns_none():
    assert await build_war_report(FakeClient(None, [], []), OURS, "Us", 0) is None

    one_sided = {"id": 1, "factions": [{"id": OURS, "name": "Us"}]}
    assert await build_war_report(FakeClient(one_sided, [], []), OURS, "Us", 0) is None
