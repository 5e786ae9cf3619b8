"""Target monitor: keeps a channel's alert messages in sync with an opposing roster.

Each cycle classifies every roster member, then reconciles the previously sent
alerts against the new classification:

    no alert, showable      -> send a new message
    alert, not showable     -> delete the message and stop tracking
    alert, still showable   -> edit the message (the countdown changes every cycle)
    no alert, not showable  -> nothing

All message operations of a cycle run concurrently. A failing operation only
affects its own member. A failed edit deletes the old message and drops its
tracking entry so the next cycle recreates the alert.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .models import AVAILABLE, IN_WINDOW, Claim, MonitorSettings, RosterMember, TrackedAlert
from .timeutils import now_ts


logger = logging.getLogger(__name__)

ALERT_HEADER = "━━━━━━━━━━━━━━ 🏥 **TARGET ALERTS** 🏥 ━━━━━━━━━━━━━━"
ALERT_FOOTER = "━" * 40

CLAIMED = "claimed"
RELEASED = "released"
REJECTED = "rejected"

# (member, classification, now, claim) -> send/edit keyword arguments
Renderer = Callable[[RosterMember, str, int, Optional[Claim]], Dict[str, Any]]


def classify(member: RosterMember, now: int, horizon: int, max_level: Optional[int] = None) -> Optional[str]:
    """Classify a member as in-window, available, or not shown (None)."""
    if member.hospitalized:
        remaining = member.until - now
        if 0 < remaining <= horizon:
            return IN_WINDOW
        return None
    if max_level is not None and member.level > max_level:
        return None
    return AVAILABLE


def select_showable(roster: Iterable[RosterMember], now: int, settings: MonitorSettings) -> Dict[int, str]:
    """Members that should have an alert this cycle, mapped to their classification.

    In-window members come first (soonest out first), followed by at most
    `settings.max_available` available members, lowest level first.
    """
    in_window: List[RosterMember] = []
    available: List[RosterMember] = []
    for member in roster:
        state = classify(member, now, settings.horizon, settings.max_level)
        if state == IN_WINDOW:
            in_window.append(member)
        elif state == AVAILABLE:
            available.append(member)

    in_window.sort(key=lambda m: m.until - now)
    available.sort(key=lambda m: m.level)

    showable = {m.id: IN_WINDOW for m in in_window}
    for member in available[:max(0, settings.max_available)]:
        showable[member.id] = AVAILABLE
    return showable


@dataclass
class CyclePlan:
    create: List[int] = field(default_factory=list)
    update: List[int] = field(default_factory=list)
    delete: List[int] = field(default_factory=list)


def plan_cycle(tracked: Dict[int, TrackedAlert], showable: Dict[int, str]) -> CyclePlan:
    """Decide which alerts to create, edit and delete."""
    plan = CyclePlan()
    for member_id in showable:
        if member_id in tracked:
            plan.update.append(member_id)
        else:
            plan.create.append(member_id)
    plan.delete = [member_id for member_id in tracked if member_id not in showable]
    return plan


class ClaimBook:
    """Exclusive, advisory claims on roster members keyed by member id."""

    def __init__(self):
        self._claims: Dict[int, Claim] = {}

    def get(self, member_id: int) -> Optional[Claim]:
        return self._claims.get(member_id)

    def all(self) -> List[Claim]:
        return sorted(self._claims.values(), key=lambda c: c.claimed_at)

    def toggle(self, member_id: int, user_id: int, user_name: str, now: Optional[int] = None) -> Tuple[str, Claim]:
        """Claim an unclaimed member, or release one's own claim.

        Returns the outcome and the claim it concerns; a claim held by someone
        else is returned unchanged with REJECTED.
        """
        existing = self._claims.get(member_id)
        if existing is None:
            claim = Claim(member_id, user_id, user_name, now if now is not None else now_ts())
            self._claims[member_id] = claim
            return CLAIMED, claim
        if existing.user_id == user_id:
            del self._claims[member_id]
            return RELEASED, existing
        return REJECTED, existing

    def clear(self):
        self._claims.clear()

    def __len__(self):
        return len(self._claims)


class TargetMonitor:
    """Owns one monitoring session: tracked alerts, bracket messages and claims."""

    def __init__(self, channel, settings: MonitorSettings, render: Renderer,
                 claims: Optional[ClaimBook] = None):
        self.channel = channel
        self.settings = settings
        self.render = render
        self.claims = claims if claims is not None else ClaimBook()
        self.alerts: Dict[int, TrackedAlert] = {}
        self.roster: Dict[int, RosterMember] = {}
        self.header_id: Optional[int] = None
        self.footer_id: Optional[int] = None
        self.last_cycle_at: Optional[int] = None

    async def run_cycle(self, roster: List[RosterMember], now: Optional[int] = None) -> CyclePlan:
        """Reconcile the channel against a freshly fetched roster."""
        now = now if now is not None else now_ts()
        self.roster = {member.id: member for member in roster}
        showable = select_showable(roster, now, self.settings)
        plan = plan_cycle(self.alerts, showable)

        if showable and self.header_id is None:
            self.header_id = await self._send_bracket(ALERT_HEADER)

        operations = [self._delete_alert(member_id) for member_id in plan.delete]
        operations += [self._update_alert(member_id, showable[member_id], now) for member_id in plan.update]
        operations += [self._create_alert(member_id, showable[member_id], now) for member_id in plan.create]
        results = await asyncio.gather(*operations)
        created = sum(1 for ok in results[len(plan.delete) + len(plan.update):] if ok)

        if self.alerts:
            if self.footer_id is None or created:
                await self._replace_footer()
        else:
            await self._remove_brackets()

        self.last_cycle_at = now
        logger.info(
            f"Monitor cycle: {len(plan.create)} new, {len(plan.update)} updated, "
            f"{len(plan.delete)} removed, {len(self.alerts)} tracked"
        )
        return plan

    def render_member(self, member_id: int, now: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Re-render a tracked member's alert, e.g. after a claim changes."""
        member = self.roster.get(member_id)
        alert = self.alerts.get(member_id)
        if member is None or alert is None:
            return None
        now = now if now is not None else now_ts()
        return self.render(member, alert.classification, now, self.claims.get(member_id))

    async def stop(self):
        """Delete every live message and forget all session state."""
        message_ids = [alert.message_id for alert in self.alerts.values()]
        message_ids += [mid for mid in (self.header_id, self.footer_id) if mid is not None]
        await asyncio.gather(*(self._delete_quietly(mid) for mid in message_ids))

        self.alerts.clear()
        self.roster.clear()
        self.claims.clear()
        self.header_id = None
        self.footer_id = None

    async def _create_alert(self, member_id: int, classification: str, now: int) -> bool:
        member = self.roster[member_id]
        try:
            payload = self.render(member, classification, now, self.claims.get(member_id))
            message_id = await self.channel.send(**payload)
        except Exception as e:
            logger.warning(f"Failed to send alert for member {member_id}: {e}")
            return False
        self.alerts[member_id] = TrackedAlert(member_id, message_id, classification)
        return True

    async def _update_alert(self, member_id: int, classification: str, now: int) -> bool:
        alert = self.alerts[member_id]
        member = self.roster[member_id]
        try:
            payload = self.render(member, classification, now, self.claims.get(member_id))
            await self.channel.edit(alert.message_id, **payload)
        except Exception as e:
            logger.warning(f"Failed to update alert for member {member_id}, will recreate: {e}")
            self.alerts.pop(member_id, None)
            await self._delete_quietly(alert.message_id)
            return False
        alert.classification = classification
        return True

    async def _delete_alert(self, member_id: int) -> bool:
        alert = self.alerts.pop(member_id)
        return await self._delete_quietly(alert.message_id)

    async def _delete_quietly(self, message_id: int) -> bool:
        try:
            await self.channel.delete(message_id)
        except Exception as e:
            logger.warning(f"Failed to delete message {message_id}: {e}")
            return False
        return True

    async def _send_bracket(self, content: str) -> Optional[int]:
        try:
            return await self.channel.send(content=content)
        except Exception as e:
            logger.warning(f"Failed to send monitor bracket message: {e}")
            return None

    async def _replace_footer(self):
        # New alerts land below the old footer, so move it back to the bottom
        if self.footer_id is not None:
            await self._delete_quietly(self.footer_id)
        self.footer_id = await self._send_bracket(ALERT_FOOTER)

    async def _remove_brackets(self):
        for message_id in (self.header_id, self.footer_id):
            if message_id is not None:
                await self._delete_quietly(message_id)
        self.header_id = None
        self.footer_id = None
