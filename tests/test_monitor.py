"""Tests for the target monitor cycle and claims."""

from __future__ import annotations

import pytest

from faction.models import AVAILABLE, IN_WINDOW, MonitorSettings, RosterMember, TrackedAlert
from faction.monitor import (
    ALERT_FOOTER,
    ALERT_HEADER,
    CLAIMED,
    REJECTED,
    RELEASED,
    ClaimBook,
    TargetMonitor,
    classify,
    plan_cycle,
    select_showable,
)

NOW = 1_700_000_000


def hospitalized(member_id: int, remaining: int, level: int = 50) -> RosterMember:
    return RosterMember(id=member_id, name=f"Hosp{member_id}", level=level, state="Hospital", until=NOW + remaining)


def okay(member_id: int, level: int = 10) -> RosterMember:
    return RosterMember(id=member_id, name=f"Okay{member_id}", level=level, state="Okay")


class FakeChannel:
    """In-memory stand-in for the alert channel adapter."""

    def __init__(self):
        self.messages: dict[int, str] = {}
        self.next_id = 1
        self.fail_send: set[str] = set()
        self.fail_edit: set[int] = set()
        self.sent: list[str] = []
        self.deleted: list[int] = []

    async def send(self, content=None, embed=None, view=None):
        if content in self.fail_send:
            raise RuntimeError("send failed")
        message_id = self.next_id
        self.next_id += 1
        self.messages[message_id] = content
        self.sent.append(content)
        return message_id

    async def edit(self, message_id, content=None, embed=None, view=None):
        if message_id in self.fail_edit:
            raise RuntimeError("edit failed")
        self.messages[message_id] = content

    async def delete(self, message_id):
        self.deleted.append(message_id)
        self.messages.pop(message_id, None)


def render(member, classification, now, claim):
    suffix = f" claimed by {claim.user_name}" if claim else ""
    return {"content": f"alert-{member.id}-{classification}{suffix}"}


def make_monitor(channel: FakeChannel, **settings) -> TargetMonitor:
    return TargetMonitor(channel, MonitorSettings(faction_id=1, **settings), render)


def test_classify_in_window_boundaries():
    assert classify(hospitalized(1, 1), NOW, 300) == IN_WINDOW
    assert classify(hospitalized(1, 300), NOW, 300) == IN_WINDOW
    assert classify(hospitalized(1, 301), NOW, 300) is None
    assert classify(hospitalized(1, 0), NOW, 300) is None
    assert classify(hospitalized(1, -30), NOW, 300) is None


def test_classify_available_and_level_cap():
    assert classify(okay(1, level=20), NOW, 300) == AVAILABLE
    assert classify(okay(1, level=20), NOW, 300, max_level=20) == AVAILABLE
    assert classify(okay(1, level=21), NOW, 300, max_level=20) is None


def test_classify_is_pure():
    member = hospitalized(1, 120)
    before = (member.state, member.until, member.level)
    assert classify(member, NOW, 300) == classify(member, NOW, 300)
    assert (member.state, member.until, member.level) == before


def test_select_showable_caps_available_lowest_level_first():
    roster = [okay(1, 40), okay(2, 5), okay(3, 25), okay(4, 10), hospitalized(5, 60), hospitalized(6, 30)]
    showable = select_showable(roster, NOW, MonitorSettings(faction_id=1, max_available=2))

    assert list(showable.items()) == [(6, IN_WINDOW), (5, IN_WINDOW), (2, AVAILABLE), (4, AVAILABLE)]


def test_plan_cycle_partitions_ids():
    tracked = {1: TrackedAlert(1, 100, IN_WINDOW), 2: TrackedAlert(2, 101, AVAILABLE)}
    plan = plan_cycle(tracked, {2: AVAILABLE, 3: IN_WINDOW})

    assert plan.create == [3]
    assert plan.update == [2]
    assert plan.delete == [1]


@pytest.mark.asyncio
async def test_first_cycle_sends_header_alerts_and_footer():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([hospitalized(1, 60), okay(2)], now=NOW)

    assert channel.sent[0] == ALERT_HEADER
    assert channel.sent[-1] == ALERT_FOOTER
    assert set(channel.sent[1:-1]) == {"alert-1-in-window", "alert-2-available"}
    assert set(monitor.alerts) == {1, 2}
    assert monitor.header_id is not None and monitor.footer_id is not None


@pytest.mark.asyncio
async def test_tracked_set_matches_showable_after_each_cycle():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    rosters = [
        [hospitalized(1, 60), okay(2), okay(3)],
        [hospitalized(1, 40), hospitalized(4, 200), okay(3)],
        [okay(5)],
    ]
    for roster in rosters:
        await monitor.run_cycle(roster, now=NOW)
        expected = select_showable(roster, NOW, monitor.settings)
        assert set(monitor.alerts) == set(expected)
        for member_id, classification in expected.items():
            assert monitor.alerts[member_id].classification == classification


@pytest.mark.asyncio
async def test_member_leaving_window_has_message_deleted():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([hospitalized(1, 60), okay(2)], now=NOW)
    message_id = monitor.alerts[1].message_id

    await monitor.run_cycle([hospitalized(1, 600), okay(2)], now=NOW)

    assert message_id in channel.deleted
    assert 1 not in monitor.alerts
    assert 2 in monitor.alerts


@pytest.mark.asyncio
async def test_still_showable_member_is_edited_in_place():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([okay(2)], now=NOW)
    message_id = monitor.alerts[2].message_id
    footer_id = monitor.footer_id

    await monitor.run_cycle([hospitalized(2, 100)], now=NOW)

    assert monitor.alerts[2].message_id == message_id
    assert monitor.alerts[2].classification == IN_WINDOW
    assert channel.messages[message_id] == "alert-2-in-window"
    # No new alerts, so the footer stays where it is
    assert monitor.footer_id == footer_id


@pytest.mark.asyncio
async def test_failed_send_only_affects_that_member():
    channel = FakeChannel()
    channel.fail_send.add("alert-2-available")
    monitor = make_monitor(channel)

    await monitor.run_cycle([hospitalized(1, 60), okay(2), okay(3)], now=NOW)

    assert set(monitor.alerts) == {1, 3}

    channel.fail_send.clear()
    await monitor.run_cycle([hospitalized(1, 50), okay(2), okay(3)], now=NOW)
    assert set(monitor.alerts) == {1, 2, 3}


@pytest.mark.asyncio
async def test_failed_edit_drops_tracking_and_recreates_next_cycle():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([okay(1), okay(2)], now=NOW)
    broken = monitor.alerts[1].message_id
    channel.fail_edit.add(broken)

    await monitor.run_cycle([okay(1), okay(2)], now=NOW)
    assert 1 not in monitor.alerts
    assert 2 in monitor.alerts
    assert broken in channel.deleted

    await monitor.run_cycle([okay(1), okay(2)], now=NOW)
    assert monitor.alerts[1].message_id != broken


@pytest.mark.asyncio
async def test_stop_leaves_no_alerts_after_failed_edit():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([okay(1)], now=NOW)
    channel.fail_edit.add(monitor.alerts[1].message_id)
    await monitor.run_cycle([okay(1)], now=NOW)
    await monitor.run_cycle([okay(1)], now=NOW)

    await monitor.stop()

    assert channel.messages == {}


@pytest.mark.asyncio
async def test_footer_moves_below_new_alerts():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([okay(1)], now=NOW)
    old_footer = monitor.footer_id

    await monitor.run_cycle([okay(1), okay(2)], now=NOW)

    assert old_footer in channel.deleted
    assert monitor.footer_id > monitor.alerts[2].message_id


@pytest.mark.asyncio
async def test_brackets_removed_when_nothing_is_shown():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([okay(1)], now=NOW)
    header, footer = monitor.header_id, monitor.footer_id

    await monitor.run_cycle([hospitalized(1, 3600)], now=NOW)

    assert monitor.alerts == {}
    assert header in channel.deleted and footer in channel.deleted
    assert monitor.header_id is None and monitor.footer_id is None
    assert channel.messages == {}


@pytest.mark.asyncio
async def test_stop_deletes_everything_and_clears_state():
    channel = FakeChannel()
    monitor = make_monitor(channel)

    await monitor.run_cycle([hospitalized(1, 60), okay(2)], now=NOW)
    monitor.claims.toggle(1, user_id=10, user_name="alice", now=NOW)

    await monitor.stop()

    assert channel.messages == {}
    assert monitor.alerts == {}
    assert len(monitor.claims) == 0
    assert monitor.header_id is None and monitor.footer_id is None


@pytest.mark.asyncio
async def test_render_member_includes_claim():
    channel = FakeChannel()
    monitor = make_monitor(channel)
    await monitor.run_cycle([okay(1)], now=NOW)

    monitor.claims.toggle(1, user_id=10, user_name="alice", now=NOW)

    assert monitor.render_member(1, now=NOW) == {"content": "alert-1-available claimed by alice"}
    assert monitor.render_member(99, now=NOW) is None


def test_claim_toggle_outcomes():
    book = ClaimBook()

    outcome, claim = book.toggle(1, user_id=10, user_name="alice", now=NOW)
    assert outcome == CLAIMED
    assert claim.user_id == 10

    outcome, claim = book.toggle(1, user_id=20, user_name="bob", now=NOW + 5)
    assert outcome == REJECTED
    assert claim.user_name == "alice"
    assert book.get(1).user_id == 10

    outcome, _ = book.toggle(1, user_id=10, user_name="alice", now=NOW + 10)
    assert outcome == RELEASED
    assert book.get(1) is None

    outcome, claim = book.toggle(1, user_id=20, user_name="bob", now=NOW + 15)
    assert outcome == CLAIMED
    assert claim.user_name == "bob"


def test_claims_listed_oldest_first():
    book = ClaimBook()
    book.toggle(2, user_id=10, user_name="alice", now=NOW + 30)
    book.toggle(1, user_id=20, user_name="bob", now=NOW)

    assert [claim.member_id for claim in book.all()] == [1, 2]
