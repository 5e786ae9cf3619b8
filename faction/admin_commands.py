"""Admin commands for payment configuration and data maintenance."""

import os
from typing import Optional

from discord.ext import commands

from .config import DEFAULT_PAYMENT_CONFIG
from .logic import FactionService
from .storage import FactionStorage
from .timeutils import hours_since_iso
from .view import format_config, format_error, format_success


class AdminCommands(commands.Cog):
    """Owner or administrator only commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = FactionStorage()
        self.service = FactionService(self.storage, bot.torn)

        self.owner_id = int(os.getenv('BOT_OWNER_ID', '0'))

    async def cog_load(self):
        await self.storage.initialize()

    def is_owner(self, user_id: int) -> bool:
        """Check if user is the bot owner."""
        if user_id == self.owner_id:
            return True

        application = getattr(self.bot, 'application', None)
        owner = getattr(application, 'owner', None)
        return owner is not None and user_id == owner.id

    async def cog_check(self, ctx: commands.Context) -> bool:
        if self.is_owner(ctx.author.id):
            return True
        permissions = getattr(ctx.author, 'guild_permissions', None)
        if permissions is not None and permissions.administrator:
            return True
        raise commands.CheckFailure("❌ This command is restricted to administrators.")

    @commands.group(name="config", invoke_without_command=True)
    async def config(self, ctx: commands.Context):
        """Show the payment configuration."""
        await ctx.send(embed=format_config(await self.storage.get_config_entries()))

    @config.command(name="set")
    async def config_set(self, ctx: commands.Context, key: str, value: float, *, description: Optional[str] = None):
        key = key.lower()
        if key == "payout_percentage" and not 0 <= value <= 100:
            await ctx.send(embed=format_error("`payout_percentage` must be between 0 and 100."))
            return
        if value < 0:
            await ctx.send(embed=format_error("Configuration values cannot be negative."))
            return

        await self.storage.set_config(key, value, description)
        note = "" if key in DEFAULT_PAYMENT_CONFIG else " (custom key, not used by payout calculations)"
        await ctx.send(embed=format_success(f"`{key}` set to **{value:g}**{note}."))

    @config.command(name="reset")
    async def config_reset(self, ctx: commands.Context, key: str = "all"):
        if key.lower() == "all":
            await self.storage.reset_config()
            await ctx.send(embed=format_success("All payment configuration values reset to defaults."))
            return

        if not await self.storage.reset_config(key.lower()):
            await ctx.send(embed=format_error(
                f"Unknown key `{key}`. Known keys: {', '.join(DEFAULT_PAYMENT_CONFIG)}"
            ))
            return
        await ctx.send(embed=format_success(
            f"`{key.lower()}` reset to **{DEFAULT_PAYMENT_CONFIG[key.lower()]:g}**."
        ))

    @commands.group(name="paid", invoke_without_command=True)
    async def paid(self, ctx: commands.Context):
        await ctx.send("Usage: `!paid reset <warId> <memberId...>`")

    @paid.command(name="reset")
    async def paid_reset(self, ctx: commands.Context, war_id: int, *member_ids: int):
        """Clear the paid flag of payout items, e.g. after a wrongly matched transfer."""
        if not member_ids:
            await ctx.send(embed=format_error("Provide at least one member id."))
            return
        changed = await self.storage.reset_paid(war_id, member_ids)
        if not changed:
            await ctx.send(embed=format_error(f"No payout items of war {war_id} matched."))
            return
        await ctx.send(embed=format_success(f"Reset the paid flag of {changed} item(s) in war {war_id}."))

    @commands.command(name="sync")
    async def sync(self, ctx: commands.Context):
        """Refresh the stored faction member list now."""
        previous = await self.service.last_member_sync()
        async with ctx.typing():
            result = await self.service.sync_members()
        if not result.success:
            await ctx.send(embed=format_error(result.message))
            return

        message = result.message
        if previous:
            message += f" Previous sync was {hours_since_iso(previous):.1f} hours ago."
        await ctx.send(embed=format_success(message))


async def setup(bot: commands.Bot):
    """Setup function to add the admin cog to the bot."""
    await bot.add_cog(AdminCommands(bot))
