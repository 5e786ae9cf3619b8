"""Faction operations behind the chat commands."""

import logging
from typing import Dict, List, Optional

import aiosqlite

from .api import TornApiError, TornClient
from .config import (
    AUDIT_NEWS_FETCH,
    EXPENSE_CATEGORIES,
    FACTION_ID,
    FACTION_NAME,
    INCOME_CATEGORIES,
    PAYOUT_NEWS_FETCH,
)
from .csvio import parse_report_csv
from .models import (
    ActionResult,
    ExpectedPayout,
    FundSnapshot,
    FundTransaction,
    PaymentVerification,
    PayoutLedger,
)
from .payouts import PayoutWeights, compute_payout
from .reconcile import audit_transfers, member_history, verify_payments
from .storage import FactionStorage
from .timeutils import iso_now
from .warreport import build_war_report


logger = logging.getLogger(__name__)

LAST_MEMBER_SYNC_KEY = "last_member_sync"


def ledger_expectations(ledger: PayoutLedger) -> List[ExpectedPayout]:
    """The payouts of a ledger, as evidence to look for in the news feed."""
    return [
        ExpectedPayout(
            member_id=str(item.member_id),
            name=item.member_name,
            amount=item.payment_amount,
            label=f"{item.member_name} [{item.member_id}]",
            war_hits=item.war_hits,
            assists=item.assists,
        )
        for item in ledger.items
    ]


def ledger_verification(ledger: PayoutLedger,
                        verified: Optional[Dict[str, PaymentVerification]] = None
                        ) -> Dict[str, PaymentVerification]:
    """Payment state per member: stored paid flags win over a fresh news check."""
    verified = verified or {}
    state = {}
    for item in ledger.items:
        key = str(item.member_id)
        if item.paid:
            state[key] = PaymentVerification(True, item.paid_by)
        else:
            state[key] = verified.get(key) or PaymentVerification(False)
    return state


class FactionService:
    """Coordinates the API client, reconciliation and storage."""

    def __init__(self, storage: FactionStorage, client: TornClient,
                 faction_id: int = FACTION_ID, faction_name: str = FACTION_NAME):
        self.storage = storage
        self.client = client
        self.faction_id = faction_id
        self.faction_name = faction_name

    async def generate_war_report(self, war_id: Optional[int] = None) -> ActionResult:
        """Build a war report from the attack log and store it."""
        config = await self.storage.get_all_config()
        try:
            report = await build_war_report(
                self.client, self.faction_id, self.faction_name, config["min_respect"], war_id
            )
        except TornApiError as e:
            logger.error(f"Failed to build war report: {e}")
            return ActionResult(False, f"Could not fetch war data: {e}")

        if report is None:
            target = f"war {war_id}" if war_id else "a recent ranked war"
            return ActionResult(False, f"Could not find {target}.")

        summary, contributions = report
        try:
            await self.storage.save_war_report(summary)
            await self.storage.save_contributions(summary.war_id, contributions)
        except aiosqlite.Error as e:
            logger.error(f"Failed to save war report {summary.war_id}: {e}")
            return ActionResult(False, f"War report generated but could not be saved: {e}",
                                (summary, contributions))

        logger.info(f"Saved war report {summary.war_id} with {len(contributions)} members")
        return ActionResult(True, f"War report for war {summary.war_id} generated.", (summary, contributions))

    async def get_war_report(self, war_id: int) -> ActionResult:
        summary = await self.storage.get_war_report(war_id)
        if summary is None:
            return ActionResult(False, f"No stored report for war {war_id}. Use `!warreport generate {war_id}` first.")
        contributions = await self.storage.get_contributions(war_id)
        return ActionResult(True, "", (summary, contributions))

    async def compute_war_payout(self, war_id: int, total_cash: float) -> ActionResult:
        """Compute, store and verify the payout ledger for a war.

        Generates the war report first if it was never stored. Items whose
        transfer is already in the news feed are marked paid.
        """
        if total_cash <= 0:
            return ActionResult(False, "The cash amount must be positive.")

        contributions = await self.storage.get_contributions(war_id)
        if not contributions:
            generated = await self.generate_war_report(war_id)
            if not generated.success:
                return generated
            contributions = generated.data[1]

        weights = PayoutWeights.from_config(await self.storage.get_all_config())
        ledger = compute_payout(war_id, contributions, total_cash, weights)
        if not ledger.items:
            return ActionResult(False, "No member earned any points in this war.")

        try:
            await self.storage.save_payout_ledger(ledger)
        except aiosqlite.Error as e:
            logger.error(f"Failed to save payout ledger for war {war_id}: {e}")
            return ActionResult(False, f"Could not save the payout: {e}")

        verification = await self.verify_ledger(war_id)
        if verification.success:
            ledger = verification.data["ledger"]
            verified = verification.data["verified"]
            doubles = verification.data["doubles"]
        else:
            verified, doubles = {}, {}

        return ActionResult(True, f"Payout for war {war_id} computed.",
                            {"ledger": ledger, "verified": verified, "doubles": doubles})

    async def verify_ledger(self, war_id: int) -> ActionResult:
        """Check a stored ledger against the news feed and mark verified items paid."""
        ledger = await self.storage.get_payout_ledger(war_id)
        if ledger is None:
            return ActionResult(False, f"No payout stored for war {war_id}.")

        try:
            news = await self.client.fetch_news(limit=PAYOUT_NEWS_FETCH)
        except TornApiError as e:
            logger.error(f"Failed to fetch news for verification: {e}")
            return ActionResult(False, f"Could not fetch faction news: {e}")

        verified, doubles = verify_payments(ledger_expectations(ledger), news)
        paid_by = {
            int(member_id): result.verified_by
            for member_id, result in verified.items()
            if result.verified
        }
        if paid_by:
            marked = await self.storage.mark_paid(war_id, paid_by)
            logger.info(f"Marked {marked} payouts of war {war_id} as paid")
            ledger = await self.storage.get_payout_ledger(war_id)

        return ActionResult(True, "", {"ledger": ledger, "verified": verified, "doubles": doubles})

    async def verify_report(self, content: str) -> ActionResult:
        """Verify the payouts listed in an uploaded war report CSV."""
        expected = parse_report_csv(content)
        if not expected:
            return ActionResult(False, "No payouts found in the attached report.")
        return await self.verify_expected(expected)

    async def verify_expected(self, expected: List[ExpectedPayout]) -> ActionResult:
        try:
            news = await self.client.fetch_news(limit=PAYOUT_NEWS_FETCH)
        except TornApiError as e:
            logger.error(f"Failed to fetch news for report verification: {e}")
            return ActionResult(False, f"Could not fetch faction news: {e}")

        verified, doubles = verify_payments(expected, news)
        return ActionResult(True, "", {"expected": expected, "verified": verified, "doubles": doubles})

    async def audit_all(self) -> ActionResult:
        try:
            news = await self.client.fetch_news(limit=AUDIT_NEWS_FETCH)
        except TornApiError as e:
            logger.error(f"Failed to fetch news for audit: {e}")
            return ActionResult(False, f"Could not fetch faction news: {e}")
        return ActionResult(True, "", audit_transfers(news))

    async def member_payment_history(self, member_id: int) -> ActionResult:
        try:
            news = await self.client.fetch_news(limit=AUDIT_NEWS_FETCH)
        except TornApiError as e:
            logger.error(f"Failed to fetch news for member {member_id}: {e}")
            return ActionResult(False, f"Could not fetch faction news: {e}")

        history = member_history(str(member_id), news)
        ledgers = await self.storage.get_member_payment_history(member_id)
        return ActionResult(True, "", {"transfers": history, "payouts": ledgers})

    async def funds_status(self) -> ActionResult:
        """Take a fresh funds snapshot: faction money is the vault minus member balances."""
        try:
            currency = await self.client.fetch_currency()
            donations = await self.client.fetch_donations()
        except TornApiError as e:
            logger.error(f"Failed to fetch faction funds: {e}")
            return ActionResult(False, f"Could not fetch faction funds: {e}")

        total_money = int((currency.get("currency") or currency).get("money") or 0)
        members_money = sum(int(entry.get("money_balance") or 0) for entry in donations.values())
        snapshot = FundSnapshot(
            total_money=total_money,
            members_money=members_money,
            faction_money=total_money - members_money,
        )
        try:
            await self.storage.save_funds_snapshot(snapshot)
        except aiosqlite.Error as e:
            logger.error(f"Failed to save funds snapshot: {e}")
            return ActionResult(False, f"Could not save the funds snapshot: {e}")
        return ActionResult(True, "", snapshot)

    async def record_transaction(self, type: str, amount: int, category: str, description: str,
                                 recorded_by: str, message_link: Optional[str] = None) -> ActionResult:
        if type not in ("expense", "income"):
            return ActionResult(False, "Type must be `expense` or `income`.")
        if amount <= 0:
            return ActionResult(False, "Amount must be a positive number.")
        if len(description or "") < 3:
            return ActionResult(False, "Please provide a valid description (minimum 3 characters).")

        categories = EXPENSE_CATEGORIES if type == "expense" else INCOME_CATEGORIES
        known = {name.lower(): name for name in categories}
        if category.lower() not in known:
            return ActionResult(False, f"Invalid category. Please use one of these: {', '.join(categories)}")
        category = known[category.lower()]

        transaction = FundTransaction(
            transaction_date=iso_now(),
            amount=amount,
            type=type,
            category=category,
            description=description,
            recorded_by=recorded_by,
            message_link=message_link,
        )
        try:
            await self.storage.record_fund_transaction(transaction)
        except aiosqlite.Error as e:
            logger.error(f"Failed to record transaction: {e}")
            return ActionResult(False, f"Could not record the transaction: {e}")
        return ActionResult(True, f"Recorded {type} of ${amount:,}.", transaction)

    async def transaction_history(self, type: Optional[str] = None, category: Optional[str] = None) -> ActionResult:
        transactions = await self.storage.get_fund_transactions(category=category, type=type)
        snapshots = await self.storage.get_funds_history(limit=1)
        return ActionResult(True, "", {"transactions": transactions, "latest": snapshots[0] if snapshots else None})

    async def sync_members(self) -> ActionResult:
        """Refresh the stored member list of our faction."""
        try:
            members = await self.client.fetch_own_members()
        except TornApiError as e:
            logger.error(f"Member sync failed: {e}")
            return ActionResult(False, f"Could not fetch faction members: {e}")

        try:
            count = await self.storage.upsert_members(members)
            await self.storage.set_state(LAST_MEMBER_SYNC_KEY, iso_now())
        except aiosqlite.Error as e:
            logger.error(f"Failed to store synced members: {e}")
            return ActionResult(False, f"Could not store faction members: {e}")
        logger.info(f"Synced {count} faction members")
        return ActionResult(True, f"Synced {count} faction members.", count)

    async def last_member_sync(self) -> Optional[str]:
        return await self.storage.get_state(LAST_MEMBER_SYNC_KEY)
