"""Tests for the faction service layer."""

from __future__ import annotations

import aiosqlite
import pytest
import pytest_asyncio

from faction.api import TornApiError
from faction.logic import FactionService, ledger_verification
from faction.models import NewsEntry, PaymentVerification, PayoutLedger, PayoutLineItem, RosterMember
from faction.storage import FactionStorage

OURS = 100
THEIRS = 200


def attack(attacker_id, result="Attacked", respect=10.0):
    return {
        "attacker": {"id": attacker_id, "faction_id": OURS},
        "defender": {"id": 9000, "faction_id": THEIRS},
        "result": result,
        "respect_gain": respect,
    }


def transfer(entry_id, recipient, amount, timestamp=100, admin="Boss"):
    return NewsEntry(
        id=str(entry_id),
        text=f"{admin} increased {recipient}'s Fatality money balance by ${amount:,} from $0 to ${amount:,}",
        timestamp=timestamp,
    )


class FakeClient:
    def __init__(self, news=None, news_error=None):
        self.news = news or []
        self.news_error = news_error
        self.members = [
            RosterMember(id=1, name="Alpha", level=50, state="Okay"),
            RosterMember(id=2, name="Bravo", level=40, state="Okay"),
        ]
        self.war = {
            "id": 77, "start": 10, "end": 20, "winner": OURS,
            "factions": [{"id": OURS, "name": "Us", "score": 3}, {"id": THEIRS, "name": "Them", "score": 1}],
        }
        self.attacks = [attack(1), attack(1), attack(1), attack(2)]
        self.currency = {"currency": {"money": 10_000}}
        self.donations = {"1": {"money_balance": 3_000}, "2": {"money_balance": 2_000}}

    async def fetch_ranked_war(self, faction_id, war_id=None):
        return self.war

    async def fetch_own_members(self):
        return self.members

    async def fetch_attacks(self, start, end):
        return self.attacks

    async def fetch_news(self, category="depositFunds", limit=300):
        if self.news_error:
            raise self.news_error
        return self.news

    async def fetch_currency(self):
        return self.currency

    async def fetch_donations(self):
        return self.donations


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = FactionStorage(str(tmp_path / "faction.db"))
    await store.initialize()
    await store.set_config("rw_hit_multiplier", 1)
    await store.set_config("assist_multiplier", 0)
    await store.set_config("payout_percentage", 50)
    return store


def service(storage, client) -> FactionService:
    return FactionService(storage, client, faction_id=OURS, faction_name="Us")


@pytest.mark.asyncio
async def test_generate_war_report_stores_contributions(storage):
    result = await service(storage, FakeClient()).generate_war_report()

    assert result.success
    summary, contributions = result.data
    assert summary.war_id == 77
    assert [(c.member_id, c.war_hits) for c in await storage.get_contributions(77)] == [(1, 3), (2, 1)]


@pytest.mark.asyncio
async def test_payout_generates_missing_report_and_marks_verified(storage):
    client = FakeClient(news=[transfer(1, "Bravo [2]", 125_000)])

    result = await service(storage, client).compute_war_payout(77, 1_000_000)

    assert result.success
    ledger = result.data["ledger"]
    assert [(i.member_id, i.payment_amount, i.paid) for i in ledger.items] == [(1, 375_000, False), (2, 125_000, True)]
    assert result.data["verified"]["2"].verified_by == "Boss"
    assert result.data["doubles"] == {}

    stored = await storage.get_payout_ledger(77)
    assert {i.member_id: i.paid_by for i in stored.items} == {1: None, 2: "Boss"}


@pytest.mark.asyncio
async def test_recomputed_payout_matches_stored_ledger(storage):
    client = FakeClient()
    client.attacks = [attack(1), attack(2, result="Assist")]
    svc = service(storage, client)
    await storage.set_config("assist_multiplier", 1)
    first = await svc.compute_war_payout(77, 1_200)
    assert [i.member_id for i in first.data["ledger"].items] == [1, 2]

    await storage.set_config("assist_multiplier", 0)
    again = await svc.compute_war_payout(77, 1_200)

    computed = [(i.member_id, i.payment_amount) for i in again.data["ledger"].items]
    stored = [(i.member_id, i.payment_amount) for i in (await storage.get_payout_ledger(77)).items]
    assert computed == [(1, 600)]
    assert stored == computed


@pytest.mark.asyncio
async def test_payout_rejects_non_positive_cash(storage):
    result = await service(storage, FakeClient()).compute_war_payout(77, 0)

    assert not result.success


@pytest.mark.asyncio
async def test_payout_survives_news_failure(storage):
    client = FakeClient(news_error=TornApiError("down"))

    result = await service(storage, client).compute_war_payout(77, 1_000_000)

    assert result.success
    assert result.data["verified"] == {}
    assert await storage.get_payout_ledger(77) is not None


@pytest.mark.asyncio
async def test_verify_ledger_reports_double_payments(storage):
    client = FakeClient()
    svc = service(storage, client)
    await svc.compute_war_payout(77, 1_000_000)
    client.news = [transfer(1, "Alpha [1]", 375_000, 100), transfer(2, "Alpha [1]", 375_000, 200, admin="Deputy")]

    result = await svc.verify_ledger(77)

    assert set(result.data["doubles"]) == {"1"}
    assert result.data["doubles"]["1"].count == 2
    paid = {i.member_id: i.paid_by for i in result.data["ledger"].items}
    assert paid[1] == "Deputy"


@pytest.mark.asyncio
async def test_verify_ledger_without_payout(storage):
    result = await service(storage, FakeClient()).verify_ledger(5)

    assert not result.success


@pytest.mark.asyncio
async def test_verify_report_from_csv(storage):
    client = FakeClient(news=[transfer(1, "John [123]", 1_000)])
    content = "Member,Total_Payout\nJohn [123],1000\nJane [456],2000\n"

    result = await service(storage, client).verify_report(content)

    assert result.success
    assert result.data["verified"]["123"].verified
    assert not result.data["verified"]["456"].verified
    assert not (await service(storage, client).verify_report("Member,Total_Payout\n")).success


@pytest.mark.asyncio
async def test_funds_status_subtracts_member_balances(storage):
    result = await service(storage, FakeClient()).funds_status()

    assert result.success
    assert (result.data.total_money, result.data.members_money, result.data.faction_money) == (10_000, 5_000, 5_000)
    assert (await storage.get_latest_funds_snapshot()).faction_money == 5_000


@pytest.mark.asyncio
async def test_record_transaction_validates_input(storage):
    svc = service(storage, FakeClient())

    assert not (await svc.record_transaction("gift", 10, "Armor", "Vests", "Boss")).success
    assert not (await svc.record_transaction("expense", 0, "Armor", "Vests", "Boss")).success
    assert not (await svc.record_transaction("expense", 10, "Armor", "ab", "Boss")).success
    assert not (await svc.record_transaction("expense", 10, "Donations", "Vests", "Boss")).success

    result = await svc.record_transaction("expense", 10, "armor", "Vests", "Boss")
    assert result.success
    assert result.data.category == "Armor"

    history = await svc.transaction_history(type="expense")
    assert [t.description for t in history.data["transactions"]] == ["Vests"]
    assert history.data["latest"] is None


@pytest.mark.asyncio
async def test_sync_members_records_time(storage):
    svc = service(storage, FakeClient())

    result = await svc.sync_members()

    assert result.success and result.data == 2
    assert await storage.get_member_count() == 2
    assert await svc.last_member_sync() is not None


def test_stored_paid_flags_win_over_news_check():
    ledger = PayoutLedger(1, 100, 50, 50, 50, 2, 25, items=[
        PayoutLineItem(1, "A", 1, 0, 0, 0, 1.0, 25, paid=True, paid_by="Boss"),
        PayoutLineItem(2, "B", 1, 0, 0, 0, 1.0, 25),
        PayoutLineItem(3, "C", 1, 0, 0, 0, 1.0, 25),
    ])

    state = ledger_verification(ledger, {"1": PaymentVerification(False), "2": PaymentVerification(True, "Deputy")})

    assert state["1"].verified and state["1"].verified_by == "Boss"
    assert state["2"].verified_by == "Deputy"
    assert not state["3"].verified


class BrokenStorage(FactionStorage):
    async def save_funds_snapshot(self, snapshot):
        raise aiosqlite.OperationalError("database is locked")

    async def upsert_members(self, members):
        raise aiosqlite.OperationalError("database is locked")


@pytest.mark.asyncio
async def test_store_failures_become_failed_results(tmp_path):
    store = BrokenStorage(str(tmp_path / "faction.db"))
    await store.initialize()
    svc = service(store, FakeClient())

    funds = await svc.funds_status()
    synced = await svc.sync_members()

    assert not funds.success and "database is locked" in funds.message
    assert not synced.success and "database is locked" in synced.message
    assert await svc.last_member_sync() is None
