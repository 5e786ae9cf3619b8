"""Database storage layer for the faction bot."""

import logging
from dataclasses import asdict
from typing import Dict, Iterable, List, Optional, Sequence

import aiosqlite

from .config import (
    CONTRIBUTION_BATCH_SIZE,
    DATABASE_PATH,
    DEFAULT_PAYMENT_CONFIG,
    PAYMENT_CONFIG_DESCRIPTIONS,
    PAYMENT_STATUS_BATCH_SIZE,
    PAYOUT_BATCH_SIZE,
)
from .models import (
    FundSnapshot,
    FundTransaction,
    MemberContribution,
    PaymentConfigEntry,
    PayoutLedger,
    PayoutLineItem,
    RosterMember,
    WarReportSummary,
)
from .timeutils import iso_now


logger = logging.getLogger(__name__)


def chunked(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FactionStorage:
    """Handles all database operations for the bot."""

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path

    async def initialize(self):
        """Initialize the database with required tables."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS faction_members (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    level INTEGER NOT NULL DEFAULT 0,
                    days_in_faction INTEGER NOT NULL DEFAULT 0,
                    position TEXT,
                    status TEXT,
                    last_action TEXT,
                    last_updated TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS war_reports (
                    war_id INTEGER PRIMARY KEY,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER NOT NULL,
                    opponent_id INTEGER NOT NULL,
                    opponent_name TEXT NOT NULL,
                    our_score INTEGER NOT NULL,
                    their_score INTEGER NOT NULL,
                    winner TEXT NOT NULL,
                    total_hits INTEGER NOT NULL DEFAULT 0,
                    total_assists INTEGER NOT NULL DEFAULT 0,
                    total_respect REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS member_contributions (
                    war_id INTEGER NOT NULL,
                    member_id INTEGER NOT NULL,
                    member_name TEXT NOT NULL,
                    position TEXT,
                    level INTEGER,
                    war_hits INTEGER NOT NULL DEFAULT 0,
                    under_respect_hits INTEGER NOT NULL DEFAULT 0,
                    non_war_hits INTEGER NOT NULL DEFAULT 0,
                    total_hits INTEGER NOT NULL DEFAULT 0,
                    hospitalizations INTEGER NOT NULL DEFAULT 0,
                    mugs INTEGER NOT NULL DEFAULT 0,
                    assists INTEGER NOT NULL DEFAULT 0,
                    draws INTEGER NOT NULL DEFAULT 0,
                    losses INTEGER NOT NULL DEFAULT 0,
                    respect REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY(war_id, member_id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS war_payouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    war_id INTEGER NOT NULL UNIQUE,
                    total_rw_cash REAL NOT NULL,
                    payout_percentage REAL NOT NULL,
                    total_payout REAL NOT NULL,
                    reserved_amount REAL NOT NULL,
                    total_points REAL NOT NULL,
                    payment_per_point REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS war_member_payouts (
                    payout_id INTEGER NOT NULL,
                    member_id INTEGER NOT NULL,
                    member_name TEXT NOT NULL,
                    war_hits INTEGER NOT NULL DEFAULT 0,
                    under_respect_hits INTEGER NOT NULL DEFAULT 0,
                    non_war_hits INTEGER NOT NULL DEFAULT 0,
                    assists INTEGER NOT NULL DEFAULT 0,
                    points REAL NOT NULL DEFAULT 0,
                    payment_amount INTEGER NOT NULL,
                    paid INTEGER NOT NULL DEFAULT 0,
                    paid_at TEXT,
                    paid_by TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(payout_id, member_id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS faction_funds_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    total_money INTEGER NOT NULL,
                    members_money INTEGER NOT NULL,
                    faction_money INTEGER NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS faction_funds_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    transaction_date TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    balance_after INTEGER,
                    type TEXT NOT NULL CHECK(type IN ('expense','income')),
                    category TEXT NOT NULL,
                    description TEXT NOT NULL,
                    recorded_by TEXT NOT NULL,
                    message_link TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS payment_config (
                    key TEXT PRIMARY KEY,
                    value REAL NOT NULL,
                    description TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            await db.commit()

    async def get_state(self, key: str) -> Optional[str]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT value FROM state WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def set_state(self, key: str, value: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)", (key, value))
            await db.commit()

    async def upsert_members(self, members: List[RosterMember]) -> int:
        """Insert or refresh our faction's members. Returns the row count written."""
        now = iso_now()
        rows = [
            (m.id, m.name, m.level, m.days_in_faction, m.position, m.state, m.last_action, now)
            for m in members
        ]
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany("""
                INSERT INTO faction_members (id, name, level, days_in_faction, position, status, last_action, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name, level = excluded.level, days_in_faction = excluded.days_in_faction,
                    position = excluded.position, status = excluded.status,
                    last_action = excluded.last_action, last_updated = excluded.last_updated
            """, rows)
            await db.commit()
        return len(rows)

    async def get_member_count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM faction_members") as cursor:
                row = await cursor.fetchone()
                return row[0]

    # War reports

    async def save_war_report(self, report: WarReportSummary):
        """Insert or regenerate a war report summary."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO war_reports (war_id, start_time, end_time, opponent_id, opponent_name, our_score,
                                         their_score, winner, total_hits, total_assists, total_respect, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(war_id) DO UPDATE SET
                    start_time = excluded.start_time, end_time = excluded.end_time,
                    opponent_id = excluded.opponent_id, opponent_name = excluded.opponent_name,
                    our_score = excluded.our_score, their_score = excluded.their_score,
                    winner = excluded.winner, total_hits = excluded.total_hits,
                    total_assists = excluded.total_assists, total_respect = excluded.total_respect
            """, (report.war_id, report.start_time, report.end_time, report.opponent_id, report.opponent_name,
                  report.our_score, report.their_score, report.winner, report.total_hits, report.total_assists,
                  report.total_respect, iso_now()))
            await db.commit()

    async def save_contributions(self, war_id: int, contributions: List[MemberContribution]):
        """Upsert contributions in batches; each batch commits on its own."""
        columns = [
            "member_id", "member_name", "position", "level", "war_hits", "under_respect_hits",
            "non_war_hits", "total_hits", "hospitalizations", "mugs", "assists", "draws", "losses", "respect",
        ]
        updates = ", ".join(f"{col} = excluded.{col}" for col in columns[1:])
        sql = f"""
            INSERT INTO member_contributions (war_id, {", ".join(columns)})
            VALUES (?, {", ".join("?" for _ in columns)})
            ON CONFLICT(war_id, member_id) DO UPDATE SET {updates}
        """
        batches = list(chunked(contributions, CONTRIBUTION_BATCH_SIZE))
        async with aiosqlite.connect(self.db_path) as db:
            for index, batch in enumerate(batches, start=1):
                logger.debug(f"Saving contributions batch {index} of {len(batches)} ({len(batch)} records)")
                rows = [(war_id, *(asdict(c)[col] for col in columns)) for c in batch]
                await db.executemany(sql, rows)
                await db.commit()

    async def get_war_report(self, war_id: int) -> Optional[WarReportSummary]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM war_reports WHERE war_id = ?", (war_id,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    data = dict(row)
                    data.pop("created_at")
                    return WarReportSummary(**data)
                return None

    async def get_contributions(self, war_id: int) -> List[MemberContribution]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM member_contributions WHERE war_id = ? ORDER BY war_hits DESC, member_id",
                (war_id,)
            ) as cursor:
                rows = await cursor.fetchall()
                contributions = []
                for row in rows:
                    data = dict(row)
                    data.pop("war_id")
                    contributions.append(MemberContribution(**data))
                return contributions

    async def get_recent_war_reports(self, limit: int = 10) -> List[WarReportSummary]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM war_reports ORDER BY end_time DESC LIMIT ?", (limit,)) as cursor:
                rows = await cursor.fetchall()
                reports = []
                for row in rows:
                    data = dict(row)
                    data.pop("created_at")
                    reports.append(WarReportSummary(**data))
                return reports

    # Payouts

    async def save_payout_ledger(self, ledger: PayoutLedger) -> int:
        """Upsert a payout summary and its line items. Returns the payout id.

        Recomputing a ledger refreshes amounts but keeps the paid flag and
        audit fields of existing items. Items missing from the new ledger are
        deleted, so the stored ledger always matches the last computation.
        """
        now = iso_now()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO war_payouts (war_id, total_rw_cash, payout_percentage, total_payout, reserved_amount,
                                         total_points, payment_per_point, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(war_id) DO UPDATE SET
                    total_rw_cash = excluded.total_rw_cash, payout_percentage = excluded.payout_percentage,
                    total_payout = excluded.total_payout, reserved_amount = excluded.reserved_amount,
                    total_points = excluded.total_points, payment_per_point = excluded.payment_per_point,
                    updated_at = excluded.updated_at
            """, (ledger.war_id, ledger.total_rw_cash, ledger.payout_percentage, ledger.total_payout,
                  ledger.reserved_amount, ledger.total_points, ledger.payment_per_point, now, now))
            await db.commit()

            async with db.execute("SELECT id FROM war_payouts WHERE war_id = ?", (ledger.war_id,)) as cursor:
                payout_id = (await cursor.fetchone())[0]

            for batch in chunked(ledger.items, PAYOUT_BATCH_SIZE):
                await db.executemany("""
                    INSERT INTO war_member_payouts (payout_id, member_id, member_name, war_hits, under_respect_hits,
                                                    non_war_hits, assists, points, payment_amount, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(payout_id, member_id) DO UPDATE SET
                        member_name = excluded.member_name, war_hits = excluded.war_hits,
                        under_respect_hits = excluded.under_respect_hits, non_war_hits = excluded.non_war_hits,
                        assists = excluded.assists, points = excluded.points,
                        payment_amount = excluded.payment_amount, updated_at = excluded.updated_at
                """, [
                    (payout_id, item.member_id, item.member_name, item.war_hits, item.under_respect_hits,
                     item.non_war_hits, item.assists, item.points, item.payment_amount, now)
                    for item in batch
                ])
                await db.commit()

            # Members the new computation excludes lose their rows, paid or not
            member_ids = [item.member_id for item in ledger.items]
            placeholders = ", ".join("?" for _ in member_ids)
            stale_filter = f" AND member_id NOT IN ({placeholders})" if member_ids else ""
            async with db.execute(
                f"SELECT member_id FROM war_member_payouts WHERE payout_id = ? AND paid = 1{stale_filter}",
                (payout_id, *member_ids)
            ) as cursor:
                dropped_paid = [row[0] for row in await cursor.fetchall()]
            if dropped_paid:
                logger.warning(f"Recomputed payout for war {ledger.war_id} drops paid members {dropped_paid}")
            await db.execute(
                f"DELETE FROM war_member_payouts WHERE payout_id = ?{stale_filter}",
                (payout_id, *member_ids)
            )
            await db.commit()

        return payout_id

    async def get_payout_ledger(self, war_id: int) -> Optional[PayoutLedger]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM war_payouts WHERE war_id = ?", (war_id,)) as cursor:
                summary = await cursor.fetchone()
            if not summary:
                return None

            async with db.execute(
                "SELECT * FROM war_member_payouts WHERE payout_id = ? ORDER BY payment_amount DESC, member_id",
                (summary["id"],)
            ) as cursor:
                rows = await cursor.fetchall()

        items = []
        for row in rows:
            data = dict(row)
            for key in ("payout_id", "updated_at"):
                data.pop(key)
            data["paid"] = bool(data["paid"])
            items.append(PayoutLineItem(**data))

        return PayoutLedger(
            war_id=summary["war_id"],
            total_rw_cash=summary["total_rw_cash"],
            payout_percentage=summary["payout_percentage"],
            total_payout=summary["total_payout"],
            reserved_amount=summary["reserved_amount"],
            total_points=summary["total_points"],
            payment_per_point=summary["payment_per_point"],
            items=items,
        )

    async def mark_paid(self, war_id: int, paid_by: Dict[int, str]) -> int:
        """Flag unpaid items as paid, recording who paid them.

        Items that are already paid keep their original audit fields. Returns
        the number of items newly marked.
        """
        now = iso_now()
        changed = 0
        updates = list(paid_by.items())
        async with aiosqlite.connect(self.db_path) as db:
            for batch in chunked(updates, PAYMENT_STATUS_BATCH_SIZE):
                for member_id, admin in batch:
                    cursor = await db.execute("""
                        UPDATE war_member_payouts SET paid = 1, paid_at = ?, paid_by = ?, updated_at = ?
                        WHERE payout_id = (SELECT id FROM war_payouts WHERE war_id = ?)
                          AND member_id = ? AND paid = 0
                    """, (now, admin, now, war_id, member_id))
                    changed += cursor.rowcount
                await db.commit()
        return changed

    async def reset_paid(self, war_id: int, member_ids: Iterable[int]) -> int:
        """Operator reset of the paid flag."""
        now = iso_now()
        changed = 0
        async with aiosqlite.connect(self.db_path) as db:
            for member_id in member_ids:
                cursor = await db.execute("""
                    UPDATE war_member_payouts SET paid = 0, paid_at = NULL, paid_by = NULL, updated_at = ?
                    WHERE payout_id = (SELECT id FROM war_payouts WHERE war_id = ?) AND member_id = ?
                """, (now, war_id, member_id))
                changed += cursor.rowcount
            await db.commit()
        return changed

    async def get_member_payment_history(self, member_id: int) -> List[Dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("""
                SELECT p.war_id, r.end_time AS war_date, r.opponent_name AS opponent,
                       m.payment_amount, m.paid, m.paid_at, m.paid_by
                FROM war_member_payouts m
                JOIN war_payouts p ON p.id = m.payout_id
                LEFT JOIN war_reports r ON r.war_id = p.war_id
                WHERE m.member_id = ?
                ORDER BY r.end_time DESC
            """, (member_id,)) as cursor:
                return [dict(row) for row in await cursor.fetchall()]

    # Funds

    async def save_funds_snapshot(self, snapshot: FundSnapshot) -> int:
        timestamp = snapshot.timestamp or iso_now()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("""
                INSERT INTO faction_funds_snapshots (timestamp, total_money, members_money, faction_money)
                VALUES (?, ?, ?, ?)
            """, (timestamp, snapshot.total_money, snapshot.members_money, snapshot.faction_money))
            await db.commit()
            snapshot.id = cursor.lastrowid
            snapshot.timestamp = timestamp
            return cursor.lastrowid

    async def get_funds_history(self, limit: int = 10) -> List[FundSnapshot]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM faction_funds_snapshots ORDER BY timestamp DESC, id DESC LIMIT ?", (limit,)
            ) as cursor:
                return [FundSnapshot(**dict(row)) for row in await cursor.fetchall()]

    async def get_latest_funds_snapshot(self) -> Optional[FundSnapshot]:
        history = await self.get_funds_history(limit=1)
        return history[0] if history else None

    async def record_fund_transaction(self, transaction: FundTransaction) -> int:
        """Store a transaction, computing the balance after it from the latest snapshot."""
        latest = await self.get_latest_funds_snapshot()
        if latest:
            if transaction.type == 'expense':
                transaction.balance_after = latest.faction_money - transaction.amount
            else:
                transaction.balance_after = latest.faction_money + transaction.amount

        transaction.timestamp = transaction.timestamp or iso_now()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("""
                INSERT INTO faction_funds_transactions (timestamp, transaction_date, amount, balance_after, type,
                                                        category, description, recorded_by, message_link)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (transaction.timestamp, transaction.transaction_date, transaction.amount, transaction.balance_after,
                  transaction.type, transaction.category, transaction.description, transaction.recorded_by,
                  transaction.message_link))
            await db.commit()
            transaction.id = cursor.lastrowid
            return cursor.lastrowid

    async def get_fund_transactions(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                                    category: Optional[str] = None, type: Optional[str] = None
                                    ) -> List[FundTransaction]:
        clauses, params = [], []
        if start_date:
            clauses.append("transaction_date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("transaction_date <= ?")
            params.append(end_date)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if type:
            clauses.append("type = ?")
            params.append(type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT * FROM faction_funds_transactions {where} ORDER BY transaction_date DESC, id DESC",
                params
            ) as cursor:
                return [FundTransaction(**dict(row)) for row in await cursor.fetchall()]

    # Payment configuration

    async def get_all_config(self) -> Dict[str, float]:
        """All payment configuration values, with defaults for missing keys.

        Falls back to the defaults entirely if the store cannot be read.
        """
        config = dict(DEFAULT_PAYMENT_CONFIG)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute("SELECT key, value FROM payment_config") as cursor:
                    for key, value in await cursor.fetchall():
                        config[key] = value
        except aiosqlite.Error as e:
            logger.warning(f"Error fetching payment config, using defaults: {e}")
            return dict(DEFAULT_PAYMENT_CONFIG)
        return config

    async def get_config_entries(self) -> List[PaymentConfigEntry]:
        values = await self.get_all_config()
        stored = {}
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute("SELECT * FROM payment_config") as cursor:
                    stored = {row["key"]: dict(row) for row in await cursor.fetchall()}
        except aiosqlite.Error as e:
            logger.warning(f"Error fetching payment config entries: {e}")

        entries = []
        for key, value in values.items():
            row = stored.get(key, {})
            entries.append(PaymentConfigEntry(
                key=key,
                value=value,
                description=row.get("description") or PAYMENT_CONFIG_DESCRIPTIONS.get(key, "Custom configuration value"),
                updated_at=row.get("updated_at"),
            ))
        return entries

    async def set_config(self, key: str, value: float, description: Optional[str] = None):
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT description FROM payment_config WHERE key = ?", (key,)) as cursor:
                existing = await cursor.fetchone()
            if not description:
                if existing:
                    description = existing[0]
                else:
                    description = PAYMENT_CONFIG_DESCRIPTIONS.get(key, "Custom configuration value")
            await db.execute(
                "INSERT OR REPLACE INTO payment_config (key, value, description, updated_at) VALUES (?, ?, ?, ?)",
                (key, value, description, iso_now())
            )
            await db.commit()

    async def reset_config(self, key: Optional[str] = None) -> bool:
        """Reset one key (or every key when None) to its default."""
        if key is None:
            for default_key, value in DEFAULT_PAYMENT_CONFIG.items():
                await self.set_config(default_key, value, PAYMENT_CONFIG_DESCRIPTIONS[default_key])
            return True
        if key not in DEFAULT_PAYMENT_CONFIG:
            return False
        await self.set_config(key, DEFAULT_PAYMENT_CONFIG[key], PAYMENT_CONFIG_DESCRIPTIONS[key])
        return True
