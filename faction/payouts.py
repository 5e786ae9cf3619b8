"""Payout computation: distribute a war's cash pool across members by points."""

import math
from dataclasses import dataclass
from typing import Dict, Iterable

from .config import DEFAULT_PAYMENT_CONFIG
from .models import MemberContribution, PayoutLedger, PayoutLineItem


@dataclass
class PayoutWeights:
    war_hit: float
    under_respect_hit: float
    non_war_hit: float
    assist: float
    min_respect: float
    payout_percentage: float

    @classmethod
    def from_config(cls, config: Dict[str, float]) -> "PayoutWeights":
        values = {**DEFAULT_PAYMENT_CONFIG, **config}
        return cls(
            war_hit=float(values["rw_hit_multiplier"]),
            under_respect_hit=float(values["under_respect_multiplier"]),
            non_war_hit=float(values["hit_multiplier"]),
            assist=float(values["assist_multiplier"]),
            min_respect=float(values["min_respect"]),
            payout_percentage=float(values["payout_percentage"]),
        )


def member_points(contribution: MemberContribution, weights: PayoutWeights) -> float:
    return (
        contribution.war_hits * weights.war_hit
        + contribution.under_respect_hits * weights.under_respect_hit
        + contribution.non_war_hits * weights.non_war_hit
        + contribution.assists * weights.assist
    )


def compute_payout(war_id: int, contributions: Iterable[MemberContribution], total_cash: float,
                   weights: PayoutWeights) -> PayoutLedger:
    """Build the payout ledger for a war.

    Members whose rounded payment is zero are left out. Items are ordered by
    payment, largest first.
    """
    contributions = list(contributions)
    points = {c.member_id: member_points(c, weights) for c in contributions}
    total_points = sum(points.values())

    total_payout = total_cash * (weights.payout_percentage / 100)
    per_point = total_payout / total_points if total_points > 0 else 0

    items = []
    for contribution in contributions:
        member_total = points[contribution.member_id]
        payment = math.floor(member_total * per_point + 0.5)
        if payment <= 0:
            continue
        items.append(PayoutLineItem(
            member_id=contribution.member_id,
            member_name=contribution.member_name,
            war_hits=contribution.war_hits,
            under_respect_hits=contribution.under_respect_hits,
            non_war_hits=contribution.non_war_hits,
            assists=contribution.assists,
            points=round(member_total, 2),
            payment_amount=payment,
        ))
    items.sort(key=lambda item: (-item.payment_amount, item.member_id))

    return PayoutLedger(
        war_id=war_id,
        total_rw_cash=total_cash,
        payout_percentage=weights.payout_percentage,
        total_payout=total_payout,
        reserved_amount=total_cash - total_payout,
        total_points=total_points,
        payment_per_point=per_point,
        items=items,
    )
