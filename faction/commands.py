"""Discord chat commands for war reports, payouts and faction funds."""

import io
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import discord
from discord.ext import commands

from .config import ACTIVE_BOARD_LIMIT, EXPENSE_CATEGORIES, INCOME_CATEGORIES, REPORT_PAGE_SIZE
from .csvio import export_payout_csv, export_status_csv, export_war_report_csv
from .logic import FactionService, ledger_expectations, ledger_verification
from .models import DoublePayment, ExpectedPayout, PaymentVerification, PayoutLedger
from .storage import FactionStorage
from .timeutils import utc_now
from .view import (
    format_audit,
    format_double_payments,
    format_error,
    format_funds,
    format_help,
    format_member_history,
    format_payout_summary,
    format_report_page,
    format_transactions,
    format_unpaid,
    format_war_history,
    format_war_report,
    funds_buttons,
    page_count,
    report_board_view,
)


logger = logging.getLogger(__name__)

CASH_SUFFIXES = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def parse_cash(text: str) -> Optional[float]:
    """Parse a cash amount such as `1,500,000`, `1.5m` or `2b`."""
    text = text.replace(",", "").replace("$", "").strip().lower()
    multiplier = 1
    if text and text[-1] in CASH_SUFFIXES:
        multiplier = CASH_SUFFIXES[text[-1]]
        text = text[:-1]
    try:
        value = float(text) * multiplier
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def csv_file(content: str, filename: str) -> discord.File:
    return discord.File(io.BytesIO(content.encode("utf-8")), filename=filename)


@dataclass
class ReportBoard:
    """A payout board message that its buttons operate on."""
    entries: List[ExpectedPayout]
    verified: Dict[str, PaymentVerification]
    doubles: Dict[str, DoublePayment] = field(default_factory=dict)
    page: int = 0
    war_id: Optional[int] = None
    ledger: Optional[PayoutLedger] = None

    @property
    def total_pages(self) -> int:
        return page_count(len(self.entries), REPORT_PAGE_SIZE)

    def payload(self) -> dict:
        return {
            "embed": format_report_page(self.entries, self.verified, self.page),
            "view": report_board_view(self.entries, self.verified, self.page),
        }


class ActiveBoards(OrderedDict):
    """Board messages by id; the oldest board is forgotten past the limit."""

    def __init__(self, limit: int = ACTIVE_BOARD_LIMIT):
        super().__init__()
        self.limit = limit

    def remember(self, message_id: int, board: ReportBoard):
        self[message_id] = board
        self.move_to_end(message_id)
        while len(self) > self.limit:
            self.popitem(last=False)


class FactionCommands(commands.Cog):
    """War report, payout and funds commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = FactionStorage()
        self.service = FactionService(self.storage, bot.torn)
        self.boards = ActiveBoards()

    async def cog_load(self):
        """Initialize the database when the cog loads."""
        await self.storage.initialize()

    async def _send_board(self, ctx: commands.Context, board: ReportBoard, **extra) -> discord.Message:
        message = await ctx.send(**board.payload(), **extra)
        self.boards.remember(message.id, board)
        return message

    @commands.group(name="warreport", invoke_without_command=True)
    async def warreport(self, ctx: commands.Context):
        """Verify an uploaded war report, or show usage."""
        attachment = next((a for a in ctx.message.attachments if a.filename.lower().endswith(".csv")), None)
        if attachment is None:
            await ctx.send(
                "Please attach a war report CSV, or use a subcommand:\n"
                "`!warreport generate [warId]`, `!warreport history [warId]`, "
                "`!warreport payout <warId> <cash>`, `!warreport verify <memberId|all>`, `!warreport verifyall`"
            )
            return

        progress = await ctx.send("Processing war report...")
        content = (await attachment.read()).decode("utf-8", errors="replace")
        result = await self.service.verify_report(content)
        if not result.success:
            await progress.edit(content=None, embed=format_error(result.message))
            return

        board = ReportBoard(result.data["expected"], result.data["verified"], result.data["doubles"])
        await progress.delete()
        await self._send_board(ctx, board)
        if board.doubles:
            await ctx.send(embed=format_double_payments(board.doubles, board.entries))

    @warreport.command(name="generate")
    async def warreport_generate(self, ctx: commands.Context, war_id: Optional[int] = None):
        progress = await ctx.send("Generating war report, this can take a while...")
        result = await self.service.generate_war_report(war_id)
        if not result.success and result.data is None:
            await progress.edit(content=None, embed=format_error(result.message))
            return

        summary, contributions = result.data
        await progress.edit(content=None if result.success else f"⚠️ {result.message}",
                            embed=format_war_report(summary, contributions))
        await ctx.send(file=csv_file(export_war_report_csv(contributions), f"war-report-{summary.war_id}.csv"))

    @warreport.command(name="history")
    async def warreport_history(self, ctx: commands.Context, war_id: Optional[int] = None):
        if war_id is None:
            await ctx.send(embed=format_war_history(await self.storage.get_recent_war_reports()))
            return

        result = await self.service.get_war_report(war_id)
        if not result.success:
            await ctx.send(embed=format_error(result.message))
            return
        summary, contributions = result.data
        await ctx.send(embed=format_war_report(summary, contributions))

    @warreport.command(name="payout")
    async def warreport_payout(self, ctx: commands.Context, war_id: int, cash: str):
        total_cash = parse_cash(cash)
        if total_cash is None:
            await ctx.send(embed=format_error(f"Could not read the cash amount `{cash}`."))
            return

        progress = await ctx.send("Calculating payouts...")
        result = await self.service.compute_war_payout(war_id, total_cash)
        if not result.success:
            await progress.edit(content=None, embed=format_error(result.message))
            return

        ledger = result.data["ledger"]
        verified = ledger_verification(ledger, result.data["verified"])
        await progress.edit(content=None, embed=format_payout_summary(ledger))

        board = ReportBoard(ledger_expectations(ledger), verified, result.data["doubles"],
                            war_id=war_id, ledger=ledger)
        await self._send_board(ctx, board,
                               file=csv_file(export_payout_csv(ledger, verified), f"payout-{war_id}.csv"))
        if board.doubles:
            await ctx.send(embed=format_double_payments(board.doubles, board.entries))

    @warreport.command(name="verify")
    async def warreport_verify(self, ctx: commands.Context, target: str):
        if target.lower() == "all":
            await self.warreport_verifyall(ctx)
            return
        try:
            member_id = int(target)
        except ValueError:
            await ctx.send(embed=format_error("Usage: `!warreport verify <memberId|all>`"))
            return

        result = await self.service.member_payment_history(member_id)
        if not result.success:
            await ctx.send(embed=format_error(result.message))
            return
        await ctx.send(embed=format_member_history(member_id, result.data["transfers"], result.data["payouts"]))

    @warreport.command(name="verifyall")
    async def warreport_verifyall(self, ctx: commands.Context):
        progress = await ctx.send("Scanning faction news for transfers...")
        result = await self.service.audit_all()
        if not result.success:
            await progress.edit(content=None, embed=format_error(result.message))
            return
        await progress.edit(content=None, embed=format_audit(result.data))

    @commands.group(name="funds", invoke_without_command=True)
    async def funds(self, ctx: commands.Context):
        """Show the current faction funds."""
        previous = await self.storage.get_latest_funds_snapshot()
        result = await self.service.funds_status()
        if not result.success:
            await ctx.send(embed=format_error(result.message))
            return
        await ctx.send(embed=format_funds(result.data, previous), view=funds_buttons())

    @funds.command(name="add")
    async def funds_add(self, ctx: commands.Context, type: Optional[str] = None, amount: Optional[str] = None,
                        category: Optional[str] = None, *, description: Optional[str] = None):
        if not all((type, amount, category, description)):
            await ctx.send(self._add_usage())
            return

        value = parse_cash(amount)
        if value is None:
            await ctx.send(embed=format_error("Amount must be a positive number."))
            return

        result = await self.service.record_transaction(
            type.lower(), int(value), category, description, str(ctx.author), ctx.message.jump_url
        )
        if not result.success:
            await ctx.send(embed=format_error(result.message))
            return

        transaction = result.data
        expense = transaction.type == "expense"
        embed = discord.Embed(
            title="🔻 Expense Recorded" if expense else "🔼 Income Recorded",
            color=0xFF0000 if expense else 0x00AA00,
            timestamp=utc_now(),
        )
        embed.add_field(name="Amount", value=f"${transaction.amount:,}", inline=True)
        embed.add_field(name="Category", value=transaction.category, inline=True)
        embed.add_field(name="Recorded By", value=transaction.recorded_by, inline=True)
        embed.add_field(name="Description", value=transaction.description, inline=False)
        balance = f"${transaction.balance_after:,}" if transaction.balance_after is not None else "Unknown"
        embed.add_field(name="Updated Balance", value=balance, inline=False)
        embed.set_footer(text=f"Transaction ID: {transaction.id}")
        await ctx.send(embed=embed)

    @funds.command(name="history")
    async def funds_history(self, ctx: commands.Context, type: Optional[str] = None,
                            category: Optional[str] = None):
        if type and type.lower() not in ("expense", "income"):
            # A bare category filter
            type, category = None, type
        result = await self.service.transaction_history(type.lower() if type else None, category)
        await ctx.send(embed=format_transactions(result.data["transactions"], result.data["latest"]))

    @commands.command(name="help")
    async def show_help(self, ctx: commands.Context):
        await ctx.send(embed=format_help())

    def _add_usage(self) -> str:
        return (
            "Please provide all required information:\n"
            "`!funds add <type> <amount> <category> <description>`\n"
            "Example: `!funds add expense 1000000 Upgrades Purchased new faction upgrade`\n\n"
            f"Valid expense categories: {', '.join(EXPENSE_CATEGORIES)}\n"
            f"Valid income categories: {', '.join(INCOME_CATEGORIES)}"
        )

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route payout board and funds buttons."""
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")

        if custom_id == "funds_add":
            await interaction.response.send_message(self._add_usage(), ephemeral=True)
        elif custom_id == "funds_history":
            result = await self.service.transaction_history()
            await interaction.response.send_message(
                embed=format_transactions(result.data["transactions"], result.data["latest"]), ephemeral=True
            )
        elif custom_id.startswith("payout_"):
            await self._handle_board_button(interaction, custom_id[len("payout_"):])

    async def _handle_board_button(self, interaction: discord.Interaction, action: str):
        board = self.boards.get(interaction.message.id) if interaction.message else None
        if board is None:
            await interaction.response.send_message("Sorry, this report is no longer active.", ephemeral=True)
            return

        if action in ("first", "prev", "next", "last"):
            board.page = {
                "first": 0,
                "prev": max(0, board.page - 1),
                "next": min(board.total_pages - 1, board.page + 1),
                "last": board.total_pages - 1,
            }[action]
            await interaction.response.edit_message(**board.payload())

        elif action == "verify":
            await interaction.response.defer()
            if board.war_id is not None:
                result = await self.service.verify_ledger(board.war_id)
                if result.success:
                    board.ledger = result.data["ledger"]
                    board.entries = ledger_expectations(board.ledger)
                    board.verified = ledger_verification(board.ledger, result.data["verified"])
            else:
                result = await self.service.verify_expected(board.entries)
                if result.success:
                    board.verified = result.data["verified"]
            if not result.success:
                await interaction.followup.send(embed=format_error(result.message), ephemeral=True)
                return
            board.doubles = result.data["doubles"]
            await interaction.message.edit(**board.payload())
            paid = sum(1 for v in board.verified.values() if v.verified)
            await interaction.followup.send(
                f"Payments verified: {paid}/{len(board.entries)} paid.", ephemeral=True
            )

        elif action == "duplicates":
            await interaction.response.send_message(
                embed=format_double_payments(board.doubles, board.entries), ephemeral=True
            )

        elif action == "unpaid":
            await interaction.response.send_message(embed=format_unpaid(board.entries, board.verified),
                                                    ephemeral=True)

        elif action == "export":
            if board.ledger is not None:
                content = export_payout_csv(board.ledger, board.verified)
            else:
                content = export_status_csv(board.entries, board.verified)
            filename = f"payment-status-{utc_now().date().isoformat()}.csv"
            await interaction.response.send_message(
                f"Payment status exported as CSV ({len(board.entries)} members)",
                file=csv_file(content, filename),
                ephemeral=True,
            )


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(FactionCommands(bot))
