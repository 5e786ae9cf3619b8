"""Daily member sync scheduler."""

import datetime
import logging
from typing import Optional

from discord.ext import commands, tasks

from .config import MEMBER_SYNC_HOUR_UTC, MEMBER_SYNC_MIN_HOURS
from .logic import FactionService
from .storage import FactionStorage
from .timeutils import utc_now


logger = logging.getLogger(__name__)


def should_sync(now: datetime.datetime, last_sync: Optional[datetime.datetime]) -> bool:
    """Sync during the configured UTC hour, at most once per minimum interval."""
    if now.hour != MEMBER_SYNC_HOUR_UTC:
        return False
    if last_sync is None:
        return True
    if last_sync.tzinfo is None:
        last_sync = last_sync.replace(tzinfo=datetime.timezone.utc)
    return now - last_sync >= datetime.timedelta(hours=MEMBER_SYNC_MIN_HOURS)


class DailyScheduler:
    """Keeps the stored member list and funds history fresh."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = FactionStorage()
        self.service = FactionService(self.storage, bot.torn)

        self.hourly_check.start()

    def cog_unload(self):
        """Clean shutdown of the scheduler."""
        self.hourly_check.cancel()

    @tasks.loop(hours=1)
    async def hourly_check(self):
        """Run the member sync and a funds snapshot when one is due."""
        try:
            last = await self.service.last_member_sync()
            last_sync = datetime.datetime.fromisoformat(last) if last else None
            if not should_sync(utc_now(), last_sync):
                return

            logger.info("Starting scheduled member sync...")
            result = await self.service.sync_members()
            if not result.success:
                logger.error(f"Scheduled member sync failed: {result.message}")
                return

            funds = await self.service.funds_status()
            if funds.success:
                logger.info(f"Recorded funds snapshot: ${funds.data.faction_money:,} faction money")
            else:
                logger.warning(f"Funds snapshot skipped: {funds.message}")

        except Exception as e:
            logger.error(f"Error in scheduled member sync: {str(e)}", exc_info=True)

    @hourly_check.before_loop
    async def before_hourly_check(self):
        """Wait for the bot and the database before the first check."""
        await self.bot.wait_until_ready()
        await self.storage.initialize()
        logger.info("Member sync scheduler initialized")


async def setup(bot: commands.Bot):
    """Setup function to add the scheduler to the bot."""
    scheduler = DailyScheduler(bot)
    # Store reference so it doesn't get garbage collected
    bot.daily_scheduler = scheduler
