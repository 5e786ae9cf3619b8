"""Main entry point for the faction Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

from error_handler import ErrorHandler

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('faction_bot.log')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = [
    # (module, description, required)
    ('faction.monitor_commands', "target monitor", True),
    ('faction.commands', "war report commands", True),
    ('faction.admin_commands', "admin commands", False),
    ('faction.scheduler', "member sync scheduler", False),
]


REQUIRED_SECRETS = [
    ('DISCORD_TOKEN', "Discord bot token"),
    ('TORN_API_KEY', "Torn API key"),
]


def load_or_prompt_env():
    """Load .env, prompting for and saving any missing secret. Returns the bot token."""
    load_dotenv()

    for name, label in REQUIRED_SECRETS:
        if os.getenv(name):
            continue
        logger.warning(f"{name} not found in .env file")
        value = input(f"Please enter your {label}: ").strip()
        if not value:
            logger.error(f"No {label} provided. Exiting.")
            sys.exit(1)

        os.environ[name] = value
        with Path('.env').open('a') as f:
            f.write(f"\n{name}={value}\n")
        logger.info(f"{name} saved to .env file")

    return os.environ['DISCORD_TOKEN']


class FactionBot(commands.Bot):
    """The main faction bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True  # Prefix commands read message text

        super().__init__(
            command_prefix='!',
            intents=intents,
            help_command=None,
            description="Faction assistant: hospital target alerts, war payouts and funds bookkeeping"
        )

        # Imported here so that load_dotenv() runs before the config module reads the environment
        from faction.api import TornClient
        self.torn = TornClient(os.getenv('TORN_API_KEY', ''))

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)

    async def setup_hook(self):
        """Setup hook called before the bot connects."""
        logger.info("Setting up faction bot...")

        for extension, description, required in EXTENSIONS:
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded {description}")
            except Exception as e:
                await self.error_handler.notify_owner(f"Failed to load {description}", str(e), e)
                logger.error(f"Failed to load {description}: {e}")
                if required:
                    raise

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Faction bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        try:
            activity = discord.Game(name="!help")
            await self.change_presence(activity=activity)

            await self.error_handler.send_startup_notification()
        except discord.HTTPException as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_command_error(self, ctx, error):
        """Handle command errors."""
        await self.error_handler.handle_command_error(ctx, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value and self.error_handler.should_notify(f"event:{event}:{exc_type.__name__}"):
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down faction bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Faction bot is shutting down normally")
        await self.torn.close()
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_env()
    bot = FactionBot()
    try:
        await bot.start(token)
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error during startup", e)
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
