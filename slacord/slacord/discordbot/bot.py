from __future__ import annotations

import logging

import discord
from discord.ext import commands

from ..config import DiscordConfig

logger = logging.getLogger(__name__)


class SlacordBot(commands.Bot):
    """Discord client used to provision archive channels and webhooks.

    Archived messages are delivered through webhooks, so the bot only needs
    the guild intents required to create channels.
    """

    def __init__(self, cfg: DiscordConfig, intents: discord.Intents | None = None) -> None:
        if intents is None:
            intents = discord.Intents.default()
            intents.guilds = True
            intents.guild_messages = True
        super().__init__(command_prefix="!", intents=intents)
        self.cfg = cfg

    async def on_ready(self) -> None:
        logger.info("Discord bot logged in as %s", self.user)


def create_bot(cfg: DiscordConfig, intents: discord.Intents | None = None) -> SlacordBot:
    return SlacordBot(cfg, intents=intents)


def is_discord_client_ready(client: commands.Bot | None) -> bool:
    """Return ``True`` when the Discord client is ready for API access."""

    if client is None:
        return False
    try:
        if client.is_closed():
            return False
        return bool(client.is_ready())
    except Exception:
        return False
