"""War report generation from the ranked war attack log."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .api import TornClient
from .models import MemberContribution, RosterMember, WarReportSummary


logger = logging.getLogger(__name__)

SUCCESSFUL_RESULTS = ("attacked", "hospitalized")
DRAW_RESULTS = ("stalemate", "timeout")
LOSS_MARKERS = ("lost", "special", "arrested", "interrupt")


def _blank(member_id: int, member: Optional[RosterMember]) -> MemberContribution:
    if member is None:
        return MemberContribution(member_id=member_id, member_name=f"Unknown [{member_id}]")
    return MemberContribution(
        member_id=member_id,
        member_name=member.name,
        position=member.position,
        level=member.level,
    )


def process_attacks(attacks: Iterable[Dict[str, Any]], our_faction_id: int, opponent_id: int,
                    members: Dict[int, RosterMember], min_respect: float = 0
                    ) -> Tuple[Dict[int, MemberContribution], int, int, float]:
    """Tally each of our members' attacks during a war.

    Every current member is included even without attacks. Returns the
    contributions keyed by member id plus total war hits, total assists on the
    opponent and total respect gained.
    """
    contributions = {member_id: _blank(member_id, member) for member_id, member in members.items()}
    total_hits = 0
    total_assists = 0
    total_respect = 0.0

    for attack in attacks:
        attacker = attack.get("attacker") or {}
        if attacker.get("faction_id") != our_faction_id or attacker.get("id") is None:
            continue

        member_id = int(attacker["id"])
        if member_id not in contributions:
            # Left the faction after the war
            contributions[member_id] = _blank(member_id, members.get(member_id))
        contribution = contributions[member_id]

        respect = float(attack.get("respect_gain") or 0)
        contribution.respect += respect
        total_respect += respect
        contribution.total_hits += 1

        result = (attack.get("result") or "").lower()
        against_opponent = (attack.get("defender") or {}).get("faction_id") == opponent_id

        if "assist" in result:
            contribution.assists += 1
            if against_opponent:
                total_assists += 1
        elif result in SUCCESSFUL_RESULTS:
            if against_opponent:
                if respect > min_respect:
                    contribution.war_hits += 1
                else:
                    contribution.under_respect_hits += 1
                total_hits += 1
            else:
                contribution.non_war_hits += 1
            if result == "hospitalized":
                contribution.hospitalizations += 1
        elif result == "mugged":
            contribution.mugs += 1
        elif result in DRAW_RESULTS:
            contribution.draws += 1
        elif any(marker in result for marker in LOSS_MARKERS):
            contribution.losses += 1

    return contributions, total_hits, total_assists, total_respect


async def build_war_report(client: TornClient, our_faction_id: int, faction_name: str,
                           min_respect: float, war_id: Optional[int] = None
                           ) -> Optional[Tuple[WarReportSummary, List[MemberContribution]]]:
    """Fetch a ranked war and its attack log and summarise it.

    Returns None when the war cannot be found or has no opponent.
    """
    war = await client.fetch_ranked_war(our_faction_id, war_id)
    if not war:
        return None

    factions = war.get("factions") or []
    ours = next((f for f in factions if f.get("id") == our_faction_id), None)
    theirs = next((f for f in factions if f.get("id") != our_faction_id), None)
    if not ours or not theirs:
        logger.warning(f"War {war.get('id')} is missing faction data")
        return None

    roster = {member.id: member for member in await client.fetch_own_members()}
    start, end = int(war.get("start") or 0), int(war.get("end") or 0)
    logger.info(f"Fetching attack logs from {start} to {end}")
    attacks = await client.fetch_attacks(start, end)
    logger.info(f"Retrieved {len(attacks)} attack logs for war {war.get('id')}")

    contributions, total_hits, total_assists, total_respect = process_attacks(
        attacks, our_faction_id, theirs["id"], roster, min_respect
    )

    summary = WarReportSummary(
        war_id=int(war["id"]),
        start_time=start,
        end_time=end,
        opponent_id=int(theirs["id"]),
        opponent_name=theirs.get("name", ""),
        our_score=int(ours.get("score") or 0),
        their_score=int(theirs.get("score") or 0),
        winner=faction_name if war.get("winner") == our_faction_id else theirs.get("name", ""),
        total_hits=total_hits,
        total_assists=total_assists,
        total_respect=round(total_respect, 2),
    )
    ordered = sorted(contributions.values(), key=lambda c: c.war_hits, reverse=True)
    return summary, ordered
