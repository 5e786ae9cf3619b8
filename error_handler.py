"""Error handling and owner notification for the faction bot."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict

import discord
from discord.ext import commands


logger = logging.getLogger(__name__)


class ErrorHandler:
    """Centralized error handling and notification system."""

    def __init__(self, bot: commands.Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts: Dict[str, int] = {}
        self.last_notification: Dict[str, datetime] = {}
        self.notification_cooldown = 300  # 5 minutes between same error types

    async def notify_owner(self, title: str, description: str, error: Exception = None):
        """Send a DM notification to the bot owner."""
        if not self.owner_id:
            return
        try:
            owner = self.bot.get_user(self.owner_id)
            if not owner:
                owner = await self.bot.fetch_user(self.owner_id)

            embed = discord.Embed(
                title=f"🚨 {title}",
                description=description,
                color=0xff0000,
                timestamp=datetime.now(timezone.utc)
            )

            if error:
                embed.add_field(
                    name="Error Details",
                    value=f"```{str(error)[:1000]}```",
                    inline=False
                )

                tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
                if len(tb) > 1000:
                    tb = tb[-1000:]
                embed.add_field(
                    name="Traceback",
                    value=f"```{tb}```",
                    inline=False
                )

            embed.set_footer(text="Faction Bot Error Handler")

            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")

        except discord.HTTPException as e:
            logger.error(f"Failed to send error notification: {e}")

    def should_notify(self, error_type: str) -> bool:
        """Count the error and apply the per-type notification cooldown."""
        now = datetime.now(timezone.utc)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        last = self.last_notification.get(error_type)
        if last is not None and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    async def handle_command_error(self, ctx: commands.Context, error: Exception):
        """Handle errors raised by chat commands."""
        error = getattr(error, 'original', error)

        # User mistakes only get a reply
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.CheckFailure):
            await ctx.send(str(error) or "🔒 You don't have permission to use this command.")
            return
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument, commands.TooManyArguments)):
            usage = f"`!{ctx.command.qualified_name} {ctx.command.signature}`" if ctx.command else ""
            await ctx.send(f"❌ {error}\nUsage: {usage}")
            return

        error_type = type(error).__name__
        if self.should_notify(error_type):
            command_name = ctx.command.qualified_name if ctx.command else "Unknown"
            guild = f"{ctx.guild.name} ({ctx.guild.id})" if ctx.guild else "DM"
            description = (
                f"**Command:** !{command_name}\n"
                f"**User:** {ctx.author.display_name} ({ctx.author.id})\n"
                f"**Guild:** {guild}\n"
                f"**Error Count:** {self.error_counts[error_type]} (since restart)"
            )
            await self.notify_owner(f"Command Error: {error_type}", description, error)

        logger.error(f"Command error in {ctx.command.qualified_name if ctx.command else 'unknown'}: {error}",
                     exc_info=error)

        try:
            error_embed = discord.Embed(
                title="❌ Command Error",
                description="An error occurred while processing your command. The bot owner has been notified.",
                color=0xff0000
            )
            if isinstance(error, commands.CommandOnCooldown):
                error_embed.description = f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds."
            await ctx.send(embed=error_embed)
        except discord.HTTPException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        if not self.owner_id:
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

            embed = discord.Embed(
                title="✅ Faction Bot Started",
                description=f"Bot is online and ready in {len(self.bot.guilds)} guild(s)",
                color=0x00ff00,
                timestamp=datetime.now(timezone.utc)
            )

            await owner.send(embed=embed)
            logger.info("Sent startup notification to owner")

        except discord.HTTPException as e:
            logger.error(f"Failed to send startup notification: {e}")
