"""Embed and component builders for the bot's messages."""

from typing import Any, Dict, Iterable, List, Optional

import discord

from .config import FACTION_NAME, REPORT_PAGE_SIZE
from .models import (
    AVAILABLE,
    Claim,
    DoublePayment,
    ExpectedPayout,
    FundSnapshot,
    FundTransaction,
    MonitorSettings,
    PaymentConfigEntry,
    PaymentRecord,
    PaymentVerification,
    PayoutLedger,
    RosterMember,
    WarReportSummary,
)
from .reconcile import TransferAudit
from .timeutils import format_countdown, format_timestamp

ATTACK_URL = "https://www.torn.com/loader.php?sid=attack&user2ID={id}"
PROFILE_URL = "https://www.torn.com/profiles.php?XID={id}"
PAY_URL = ("https://www.torn.com/factions.php?step=your#/tab=controls&option=give-to-user"
           "&giveMoneyTo={id}&money={amount}")

IN_WINDOW_COLOR = 0xFF4500
AVAILABLE_COLOR = 0x00FF00
REPORT_COLOR = 0x00BFFF
WARNING_COLOR = 0xFFA500

PAGINATION_ACTIONS = ("first", "prev", "next", "last")
BOARD_ACTIONS = ("verify", "duplicates", "unpaid", "export")
PAY_LINKS_PER_ROW = 5
PAY_LINK_ROWS = 2


def compact_money(amount: float) -> str:
    """Short money format, e.g. 1.25B or 350K."""
    for limit, suffix in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if abs(amount) >= limit:
            return f"{amount / limit:.2f}".rstrip("0").rstrip(".") + suffix
    return f"{amount:,.0f}"


# Target monitor

def _member_details(member: RosterMember) -> str:
    details = f"🏢 {member.position or 'Member'} • 📅 {member.days_in_faction}d in faction"
    if member.vitality is not None:
        details += f" • ❤️ {int(member.vitality * 100)}%"
    return details


def format_alert(member: RosterMember, classification: str, now: int,
                 claim: Optional[Claim] = None) -> Dict[str, Any]:
    """Alert message for one roster member, as send/edit keyword arguments."""
    if classification == AVAILABLE:
        embed = discord.Embed(title=f"{member.name} (Lvl {member.level})", color=AVAILABLE_COLOR)
        embed.description = (
            f"✅ **AVAILABLE NOW**\n"
            f"{_member_details(member)}\n"
            f"⌚ {member.last_action or 'Unknown'}"
        )
    else:
        remaining = member.until - now
        embed = discord.Embed(title=f"{member.name} (Lvl {member.level})", color=IN_WINDOW_COLOR)
        embed.description = (
            f"⏰ **Hospital Exit:** <t:{member.until}:R> ({format_countdown(remaining)})\n"
            f"{_member_details(member)}\n"
            f"⌚ {member.last_action or 'Unknown'} • "
            f"{'✅ Revivable' if member.is_revivable else '❌ Not revivable'}"
        )
        if member.has_early_discharge:
            embed.description += " • 💊 Early discharge"

    if member.description:
        embed.set_footer(text=member.description)
    if claim:
        embed.add_field(name="🎯 Claimed", value=f"by **{claim.user_name}** <t:{claim.claimed_at}:R>", inline=False)

    view = discord.ui.View(timeout=None)
    view.add_item(discord.ui.Button(label="⚔️ Attack", style=discord.ButtonStyle.link,
                                    url=ATTACK_URL.format(id=member.id)))
    view.add_item(discord.ui.Button(label="👤 Profile", style=discord.ButtonStyle.link,
                                    url=PROFILE_URL.format(id=member.id)))
    view.add_item(discord.ui.Button(
        label=f"🔒 {claim.user_name}"[:80] if claim else "🎯 Claim",
        style=discord.ButtonStyle.danger if claim else discord.ButtonStyle.secondary,
        custom_id=f"claim_{member.id}",
    ))
    return {"content": None, "embed": embed, "view": view}


def format_claims(claims: List[Claim], roster: Dict[int, RosterMember]) -> discord.Embed:
    embed = discord.Embed(title="🎯 Current Claims", color=WARNING_COLOR)
    if not claims:
        embed.description = "No targets are claimed."
        return embed
    lines = []
    for claim in claims:
        member = roster.get(claim.member_id)
        name = member.name if member else f"[{claim.member_id}]"
        lines.append(f"**{name}** claimed by {claim.user_name} <t:{claim.claimed_at}:R>")
    embed.description = "\n".join(lines)
    return embed


def format_monitor_status(settings: Optional[MonitorSettings], running: bool, tracked: int,
                          claims: int, last_cycle_at: Optional[int]) -> discord.Embed:
    embed = discord.Embed(title="🏥 Target Monitor", color=IN_WINDOW_COLOR if running else 0x808080)
    if not running or settings is None:
        embed.description = "The monitor is not running. Use `!monitor start` to begin."
        return embed
    embed.add_field(name="Faction", value=str(settings.faction_id), inline=True)
    embed.add_field(name="Window", value=f"{settings.horizon // 60} min", inline=True)
    embed.add_field(name="Interval", value=f"{settings.interval}s", inline=True)
    embed.add_field(name="Alerts", value=str(tracked), inline=True)
    embed.add_field(name="Claims", value=str(claims), inline=True)
    if last_cycle_at:
        embed.add_field(name="Last check", value=f"<t:{last_cycle_at}:R>", inline=True)
    return embed


# Payout report board

def page_count(total: int, page_size: int = REPORT_PAGE_SIZE) -> int:
    return max(1, (total + page_size - 1) // page_size)


def format_report_page(entries: List[ExpectedPayout], verified: Dict[str, PaymentVerification],
                       page: int, page_size: int = REPORT_PAGE_SIZE,
                       title: str = "💰 War Payout Report 💰") -> discord.Embed:
    """One page of a payout board, largest payouts first."""
    ordered = sorted(entries, key=lambda e: e.amount, reverse=True)
    total_pages = page_count(len(ordered), page_size)
    paid = sum(1 for entry in ordered if verified.get(entry.member_id, PaymentVerification(False)).verified)
    total = sum(entry.amount for entry in ordered)

    embed = discord.Embed(
        title=title,
        description=(
            f"Total payout: **${compact_money(total)}**\n"
            f"Progress: **{paid}/{len(ordered)}** members paid\n"
            f"Page {page + 1}/{total_pages}"
        ),
        color=REPORT_COLOR,
    )
    embed.set_footer(text="Use 'Verify Payments' to check for completed payments")

    for entry in ordered[page * page_size:(page + 1) * page_size]:
        status = verified.get(entry.member_id)
        if status and status.verified:
            when = f" ({format_timestamp(status.timestamp)})" if status.timestamp else ""
            paid_line = f"✅ **PAID** by {status.verified_by}{when}"
            prefix = "✅"
        else:
            paid_line = "⏳ Pending payment"
            prefix = "🔸"
        embed.add_field(
            name=f"{prefix} {entry.label or entry.name}",
            value=f"💵 **${entry.amount:,}** | Hits: {entry.war_hits} | Assists: {entry.assists}\n{paid_line}",
            inline=False,
        )
    return embed


def _pagination_buttons(page: int, total_pages: int) -> List[discord.ui.Button]:
    first = page == 0
    last = page >= total_pages - 1
    return [
        discord.ui.Button(label="<<", style=discord.ButtonStyle.secondary, custom_id="payout_first", disabled=first),
        discord.ui.Button(label="<", style=discord.ButtonStyle.secondary, custom_id="payout_prev", disabled=first),
        discord.ui.Button(label=f"Page {page + 1}/{total_pages}", style=discord.ButtonStyle.secondary,
                          custom_id="payout_page", disabled=True),
        discord.ui.Button(label=">", style=discord.ButtonStyle.secondary, custom_id="payout_next", disabled=last),
        discord.ui.Button(label=">>", style=discord.ButtonStyle.secondary, custom_id="payout_last", disabled=last),
    ]


def _action_buttons() -> List[discord.ui.Button]:
    return [
        discord.ui.Button(label="🔄 Verify Payments", style=discord.ButtonStyle.primary, custom_id="payout_verify"),
        discord.ui.Button(label="🔍 Check Duplicates", style=discord.ButtonStyle.danger,
                          custom_id="payout_duplicates"),
        discord.ui.Button(label="📋 Show Unpaid", style=discord.ButtonStyle.secondary, custom_id="payout_unpaid"),
        discord.ui.Button(label="📊 Export Status", style=discord.ButtonStyle.secondary, custom_id="payout_export"),
    ]


def pay_link(entry: ExpectedPayout) -> str:
    return entry.link or PAY_URL.format(id=entry.member_id, amount=entry.amount)


def report_board_view(entries: List[ExpectedPayout], verified: Dict[str, PaymentVerification],
                      page: int, page_size: int = REPORT_PAGE_SIZE) -> discord.ui.View:
    """Pagination row, action row and up to two rows of pay links for unpaid members on the page."""
    ordered = sorted(entries, key=lambda e: e.amount, reverse=True)
    total_pages = page_count(len(ordered), page_size)

    view = discord.ui.View(timeout=None)
    for button in _pagination_buttons(page, total_pages):
        button.row = 0
        view.add_item(button)
    for button in _action_buttons():
        button.row = 1
        view.add_item(button)

    unpaid = [
        entry for entry in ordered[page * page_size:(page + 1) * page_size]
        if not verified.get(entry.member_id, PaymentVerification(False)).verified
    ]
    for index, entry in enumerate(unpaid[:PAY_LINKS_PER_ROW * PAY_LINK_ROWS]):
        view.add_item(discord.ui.Button(
            label=f"Pay {entry.name[:10]}",
            style=discord.ButtonStyle.link,
            url=pay_link(entry),
            row=2 + index // PAY_LINKS_PER_ROW,
        ))
    return view


def format_unpaid(entries: List[ExpectedPayout], verified: Dict[str, PaymentVerification]) -> discord.Embed:
    unpaid = [e for e in entries if not verified.get(e.member_id, PaymentVerification(False)).verified]
    embed = discord.Embed(title="📋 Unpaid Members", color=WARNING_COLOR)
    if not unpaid:
        embed.description = "✅ Everyone has been paid!"
        embed.color = AVAILABLE_COLOR
        return embed

    unpaid.sort(key=lambda e: e.amount, reverse=True)
    lines = [f"[{e.name}]({pay_link(e)}) - ${e.amount:,}" for e in unpaid]
    text = ""
    for line in lines:
        if len(text) + len(line) + 1 > 4000:
            text += "\n…"
            break
        text += line + "\n"
    embed.description = text.rstrip("\n")
    embed.set_footer(text=f"{len(unpaid)} unpaid, ${sum(e.amount for e in unpaid):,} outstanding")
    return embed


def format_double_payments(doubles: Dict[str, DoublePayment], entries: Iterable[ExpectedPayout]) -> discord.Embed:
    names = {entry.member_id: entry for entry in entries}
    if not doubles:
        return discord.Embed(title="✅ No Double Payments", description="No member was paid more than once.",
                             color=AVAILABLE_COLOR)

    embed = discord.Embed(
        title="⚠️ Double Payments Detected",
        description=f"{len(doubles)} member(s) received the same payout more than once.",
        color=0xFF0000,
    )
    for member_id, double in list(doubles.items())[:25]:
        entry = names.get(member_id)
        label = entry.label if entry else member_id
        amount = f"${entry.amount:,}" if entry else "?"
        payments = "\n".join(
            f"• {record.admin} ({format_timestamp(record.timestamp)})" for record in double.payments[:5]
        )
        embed.add_field(name=f"{label}: {double.count}× {amount}", value=payments or "-", inline=False)
    return embed


def format_audit(audit: TransferAudit) -> discord.Embed:
    embed = discord.Embed(title="🔍 Transfer Audit", color=REPORT_COLOR)
    embed.description = (
        f"Transfers scanned: **{audit.total_transfers}**\n"
        f"Unique recipients: **{audit.unique_recipients}**\n"
        f"Suspected duplicates: **{len(audit.duplicates)}**"
    )
    if audit.duplicates:
        lines = [
            f"**{group.name}** [{group.recipient_id}]: {group.count}× ${group.amount:,} by {', '.join(group.admins)}"
            for group in audit.duplicates[:15]
        ]
        embed.add_field(name="⚠️ Repeated transfers (review manually)", value="\n".join(lines)[:1024], inline=False)
    if audit.top_recipients:
        lines = [f"{name} [{rid}]: {count}" for rid, name, count in audit.top_recipients]
        embed.add_field(name="Most frequent recipients", value="\n".join(lines), inline=False)
    embed.set_footer(text="Same-amount transfers for different wars also appear here")
    return embed


def format_member_history(member_id: int, transfers: Dict[int, List[PaymentRecord]],
                          payouts: List[Dict[str, Any]]) -> discord.Embed:
    embed = discord.Embed(title=f"💵 Payment History [{member_id}]", color=REPORT_COLOR)
    if not transfers and not payouts:
        embed.description = "No payments found for this member."
        return embed

    for amount, records in sorted(transfers.items(), key=lambda item: -item[0])[:10]:
        lines = [f"• {r.admin} ({format_timestamp(r.timestamp)})" for r in records[:5]]
        flag = " ⚠️" if len(records) > 1 else ""
        embed.add_field(name=f"${amount:,} × {len(records)}{flag}", value="\n".join(lines), inline=False)

    if payouts:
        lines = []
        for row in payouts[:10]:
            status = f"✅ by {row['paid_by']}" if row["paid"] else "⏳ pending"
            opponent = f" vs {row['opponent']}" if row.get("opponent") else ""
            lines.append(f"War {row['war_id']}{opponent}: ${row['payment_amount']:,} {status}")
        embed.add_field(name="Recorded payouts", value="\n".join(lines), inline=False)
    return embed


# War reports and payouts

def format_war_report(report: WarReportSummary, top: Iterable = ()) -> discord.Embed:
    won = report.winner == FACTION_NAME
    embed = discord.Embed(
        title=f"⚔️ War Report #{report.war_id}: {FACTION_NAME} vs {report.opponent_name}",
        color=AVAILABLE_COLOR if won else 0xFF0000,
    )
    embed.description = (
        f"**Winner:** {report.winner}\n"
        f"**Score:** {report.our_score:,} - {report.their_score:,}\n"
        f"**Duration:** {format_timestamp(report.start_time)} → {format_timestamp(report.end_time)}"
    )
    embed.add_field(name="War Hits", value=f"{report.total_hits:,}", inline=True)
    embed.add_field(name="Assists", value=f"{report.total_assists:,}", inline=True)
    embed.add_field(name="Respect", value=f"{report.total_respect:,.2f}", inline=True)

    lines = [
        f"{index}. **{c.member_name}**: {c.war_hits} hits, {c.assists} assists, {c.respect:.1f} respect"
        for index, c in enumerate(list(top)[:10], start=1)
    ]
    if lines:
        embed.add_field(name="Top contributors", value="\n".join(lines), inline=False)
    return embed


def format_war_history(reports: List[WarReportSummary]) -> discord.Embed:
    embed = discord.Embed(title="📜 Recent War Reports", color=REPORT_COLOR)
    if not reports:
        embed.description = "No war reports stored yet. Use `!warreport generate`."
        return embed
    embed.description = "\n".join(
        f"**#{r.war_id}** vs {r.opponent_name}: {r.our_score:,}-{r.their_score:,} "
        f"({'🏆' if r.winner == FACTION_NAME else '❌'}) {format_timestamp(r.end_time)}"
        for r in reports
    )
    return embed


def format_payout_summary(ledger: PayoutLedger) -> discord.Embed:
    paid = sum(1 for item in ledger.items if item.paid)
    embed = discord.Embed(title=f"💰 Payout for War #{ledger.war_id}", color=REPORT_COLOR)
    embed.add_field(name="Ranked war cash", value=f"${ledger.total_rw_cash:,.0f}", inline=True)
    embed.add_field(name=f"Paid out ({ledger.payout_percentage:g}%)", value=f"${ledger.total_payout:,.0f}",
                    inline=True)
    embed.add_field(name="Reserved", value=f"${ledger.reserved_amount:,.0f}", inline=True)
    embed.add_field(name="Total points", value=f"{ledger.total_points:,.2f}", inline=True)
    embed.add_field(name="Per point", value=f"${ledger.payment_per_point:,.0f}", inline=True)
    embed.add_field(name="Paid", value=f"{paid}/{len(ledger.items)}", inline=True)
    return embed


# Configuration and funds

def format_config(entries: List[PaymentConfigEntry]) -> discord.Embed:
    embed = discord.Embed(title="⚙️ Payment Configuration", color=REPORT_COLOR)
    for entry in entries:
        updated = f"\nUpdated {entry.updated_at[:16].replace('T', ' ')}" if entry.updated_at else ""
        embed.add_field(name=f"{entry.key} = {entry.value:g}", value=f"{entry.description}{updated}", inline=False)
    embed.set_footer(text="Use !config set <key> <value> to change a value")
    return embed


def format_funds(snapshot: FundSnapshot, previous: Optional[FundSnapshot] = None) -> discord.Embed:
    embed = discord.Embed(title=f"🏦 {FACTION_NAME} Funds", color=AVAILABLE_COLOR)
    embed.add_field(name="Faction money", value=f"${snapshot.faction_money:,}", inline=True)
    embed.add_field(name="Member balances", value=f"${snapshot.members_money:,}", inline=True)
    embed.add_field(name="Vault total", value=f"${snapshot.total_money:,}", inline=True)
    if previous is not None:
        change = snapshot.faction_money - previous.faction_money
        embed.add_field(name="Change since last check", value=f"{'+' if change >= 0 else '-'}${abs(change):,}",
                        inline=False)
    return embed


def funds_buttons() -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(discord.ui.Button(label="➕ Add Transaction", style=discord.ButtonStyle.primary,
                                    custom_id="funds_add"))
    view.add_item(discord.ui.Button(label="📜 History", style=discord.ButtonStyle.secondary,
                                    custom_id="funds_history"))
    return view


def format_transactions(transactions: List[FundTransaction], latest: Optional[FundSnapshot] = None,
                        limit: int = 15) -> discord.Embed:
    embed = discord.Embed(title="📜 Transaction History", color=REPORT_COLOR)
    if not transactions:
        embed.description = "No transactions recorded."
        return embed

    income = sum(t.amount for t in transactions if t.type == "income")
    expenses = sum(t.amount for t in transactions if t.type == "expense")
    lines = []
    for t in transactions[:limit]:
        sign = "+" if t.type == "income" else "-"
        balance = f" → ${t.balance_after:,}" if t.balance_after is not None else ""
        lines.append(f"`{t.transaction_date[:10]}` {sign}${t.amount:,} **{t.category}**: {t.description}{balance}")
    embed.description = "\n".join(lines)[:4000]
    embed.add_field(name="Income", value=f"${income:,}", inline=True)
    embed.add_field(name="Expenses", value=f"${expenses:,}", inline=True)
    if latest is not None:
        embed.add_field(name="Current faction money", value=f"${latest.faction_money:,}", inline=True)
    return embed


def format_help() -> discord.Embed:
    embed = discord.Embed(title=f"📋 {FACTION_NAME} Bot Command Reference", color=REPORT_COLOR)
    embed.add_field(name="🔍 Monitoring Commands", value=(
        "`!monitor start [maxMinutes] [intervalSeconds] [factionId]` start alerts\n"
        "`!monitor stop` stop and clear alerts\n"
        "`!monitor status` show monitor state\n"
        "`!monitor dibs` list claimed targets"
    ), inline=False)
    embed.add_field(name="📊 War Report Commands", value=(
        "`!warreport` + CSV attachment: payout board\n"
        "`!warreport generate [warId]` build a report\n"
        "`!warreport history [warId]` list or show reports\n"
        "`!warreport payout <warId> <cash>` compute payouts\n"
        "`!warreport verify <memberId|all>` payment history or audit\n"
        "`!warreport verifyall` audit all transfers"
    ), inline=False)
    embed.add_field(name="🏦 Funds Commands", value=(
        "`!funds` current funds\n"
        "`!funds add <expense|income> <amount> <category> <description>`\n"
        "`!funds history [expense|income] [category]`"
    ), inline=False)
    embed.add_field(name="⚙️ Admin Commands", value=(
        "`!config`, `!config set <key> <value> [description]`, `!config reset [key|all]`\n"
        "`!paid reset <warId> <memberId...>`\n"
        "`!sync`"
    ), inline=False)
    return embed


def format_error(message: str) -> discord.Embed:
    """Format an error message."""
    return discord.Embed(title="❌ Error", description=message, color=0xff0000)


def format_success(message: str) -> discord.Embed:
    """Format a success message."""
    return discord.Embed(title="✅ Success", description=message, color=0x00ff00)
