"""Chat commands and background loop for the target monitor."""

import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands, tasks

from .api import TornApiError
from .config import DEFAULT_CHECK_INTERVAL, DEFAULT_MAX_HOSPITAL_MINUTES, FACTION_ID, MAX_AVAILABLE_ALERTS
from .models import MonitorSettings
from .monitor import CLAIMED, RELEASED, TargetMonitor
from .notifications import AlertChannel, resolve_alert_channel
from .view import format_alert, format_claims, format_error, format_monitor_status


logger = logging.getLogger(__name__)


class MonitorCog(commands.Cog):
    """Polls an opposing faction and keeps hospital alerts current."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.monitor: Optional[TargetMonitor] = None

    def cog_unload(self):
        self.monitor_loop.cancel()

    @property
    def running(self) -> bool:
        return self.monitor is not None and self.monitor_loop.is_running()

    @tasks.loop(seconds=DEFAULT_CHECK_INTERVAL)
    async def monitor_loop(self):
        """One monitoring cycle; the next iteration starts only after this one returns."""
        monitor = self.monitor
        if monitor is None:
            return
        try:
            roster = await self.bot.torn.fetch_roster(monitor.settings.faction_id)
        except TornApiError as e:
            logger.error(f"Roster fetch failed, skipping cycle: {e}")
            return
        await monitor.run_cycle(roster)

    @monitor_loop.before_loop
    async def before_monitor_loop(self):
        await self.bot.wait_until_ready()

    @monitor_loop.error
    async def monitor_loop_error(self, error: Exception):
        logger.error(f"Monitor loop stopped by unexpected error: {error}", exc_info=error)
        if hasattr(self.bot, 'error_handler'):
            await self.bot.error_handler.notify_owner(
                "Monitor Loop Stopped", "The target monitor loop raised an unexpected error", error
            )

    @commands.group(name="monitor", invoke_without_command=True)
    async def monitor_group(self, ctx: commands.Context):
        await ctx.send(
            "**Monitor commands:**\n"
            "`!monitor start [maxMinutes] [intervalSeconds] [factionId]` - Start monitoring\n"
            "`!monitor stop` - Stop monitoring\n"
            "`!monitor status` - Show monitoring status\n"
            "`!monitor dibs` - Show claimed targets"
        )

    @monitor_group.command(name="start")
    async def monitor_start(self, ctx: commands.Context, max_minutes: int = DEFAULT_MAX_HOSPITAL_MINUTES,
                            interval: int = DEFAULT_CHECK_INTERVAL, faction_id: Optional[int] = None):
        if max_minutes <= 0 or interval <= 0:
            await ctx.send(embed=format_error("Minutes and interval must be positive numbers."))
            return

        custom = faction_id is not None
        if not custom:
            try:
                faction_id = await self.bot.torn.fetch_active_opponent(FACTION_ID)
            except TornApiError as e:
                logger.error(f"Could not look up ranked war opponent: {e}")
                await ctx.send(embed=format_error(f"Could not look up the ranked war opponent: {e}"))
                return
            if faction_id is None:
                await ctx.send(embed=format_error(
                    "No active ranked war found. Pass a faction id: `!monitor start 5 20 <factionId>`"
                ))
                return

        await self._stop_monitor()

        channel = AlertChannel(resolve_alert_channel(self.bot, ctx.channel))
        settings = MonitorSettings(
            faction_id=faction_id,
            horizon=max_minutes * 60,
            interval=interval,
            max_available=MAX_AVAILABLE_ALERTS,
        )
        self.monitor = TargetMonitor(channel, settings, format_alert)
        self.monitor_loop.change_interval(seconds=interval)
        self.monitor_loop.start()

        source = "Custom" if custom else "RW opponent"
        logger.info(f"Monitor started for faction {faction_id} by {ctx.author} ({max_minutes}m, {interval}s)")
        await ctx.send(
            f"Started monitoring faction ID: {faction_id} ({source})\n"
            f"Settings: 0-{max_minutes}m range, checking every {interval}s"
        )

    @monitor_group.command(name="stop")
    async def monitor_stop(self, ctx: commands.Context):
        if self.monitor is None:
            await ctx.send("Monitoring is not active.")
            return
        await self._stop_monitor()
        logger.info(f"Monitor stopped by {ctx.author}")
        await ctx.send("Monitoring stopped and alerts cleared.")

    @monitor_group.command(name="status")
    async def monitor_status(self, ctx: commands.Context):
        monitor = self.monitor
        if monitor is None:
            await ctx.send(embed=format_monitor_status(None, False, 0, 0, None))
            return
        await ctx.send(embed=format_monitor_status(
            monitor.settings, self.running, len(monitor.alerts), len(monitor.claims), monitor.last_cycle_at
        ))

    @monitor_group.command(name="dibs")
    async def monitor_dibs(self, ctx: commands.Context):
        if self.monitor is None:
            await ctx.send("Monitoring is not active.")
            return
        await ctx.send(embed=format_claims(self.monitor.claims.all(), self.monitor.roster))

    async def _stop_monitor(self):
        task = self.monitor_loop.get_task()
        if task is not None and not task.done():
            self.monitor_loop.cancel()
            # start() refuses to run while the previous task is unfinished
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.monitor is not None:
            await self.monitor.stop()
            self.monitor = None

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route claim button clicks to the claim book."""
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        if not custom_id.startswith("claim_"):
            return

        try:
            member_id = int(custom_id[len("claim_"):])
        except ValueError:
            return

        monitor = self.monitor
        if monitor is None:
            await interaction.response.send_message("Monitoring is not active.", ephemeral=True)
            return

        outcome, claim = monitor.claims.toggle(member_id, interaction.user.id, interaction.user.display_name)
        if outcome == CLAIMED:
            notice = "🎯 Target claimed. Click again to release it."
        elif outcome == RELEASED:
            notice = "Claim released."
        else:
            await interaction.response.send_message(
                f"This target is already claimed by {claim.user_name}.", ephemeral=True
            )
            return

        payload = monitor.render_member(member_id)
        if payload is None:
            await interaction.response.send_message(notice, ephemeral=True)
            return

        await interaction.response.edit_message(**payload)
        await interaction.followup.send(notice, ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the monitor cog to the bot."""
    await bot.add_cog(MonitorCog(bot))
