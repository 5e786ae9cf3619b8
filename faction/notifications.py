"""Channel adapters for messages the bot keeps up to date."""

import logging
from typing import Optional

import discord

from .config import MONITOR_CHANNEL_ID


logger = logging.getLogger(__name__)


def resolve_alert_channel(bot, fallback: discord.abc.Messageable):
    """Pick the configured alert channel, or fall back to the command channel."""
    if MONITOR_CHANNEL_ID:
        channel = bot.get_channel(MONITOR_CHANNEL_ID)
        if channel:
            return channel
        logger.warning(f"Configured monitor channel {MONITOR_CHANNEL_ID} not accessible, using command channel")
    return fallback


class AlertChannel:
    """Send, edit and delete messages by id in a single text channel."""

    def __init__(self, channel: discord.TextChannel):
        self.channel = channel

    @property
    def id(self) -> int:
        return self.channel.id

    async def send(self, content: Optional[str] = None, embed: Optional[discord.Embed] = None,
                   view: Optional[discord.ui.View] = None) -> int:
        kwargs = {"content": content, "embed": embed}
        if view is not None:
            kwargs["view"] = view
        message = await self.channel.send(**kwargs)
        return message.id

    async def edit(self, message_id: int, content: Optional[str] = None,
                   embed: Optional[discord.Embed] = None, view: Optional[discord.ui.View] = None):
        message = self.channel.get_partial_message(message_id)
        await message.edit(content=content, embed=embed, view=view)

    async def delete(self, message_id: int):
        await self.channel.get_partial_message(message_id).delete()
