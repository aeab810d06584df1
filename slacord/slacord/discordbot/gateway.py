from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

import aiohttp
import discord
from discord.ext import commands
from discord.utils import MISSING

from ..bridge import ArchivePayload
from ..channel_names import DISCORD_NAME_LIMIT, DISCORD_TOPIC_LIMIT, sanitize_channel_name
from ..errors import UpstreamError
from .bot import is_discord_client_ready

logger = logging.getLogger(__name__)

WEBHOOK_NAME = "Slacord Backup"
ALLOWED_MENTIONS = discord.AllowedMentions.none()


@dataclass
class ProvisionedChannel:
    channel_id: str
    channel_name: str
    webhook_url: str


def _discord_error(exc: discord.HTTPException) -> str:
    """Return a human friendly discord error message."""
    txt = exc.text or ""
    try:
        data = json.loads(txt)
        if isinstance(data, dict):
            msg = data.get("message") or ""
            code = data.get("code")
            if code is not None:
                return f"{msg} (code {code})" if msg else f"code {code}"
            if msg:
                return msg
    except ValueError:
        pass
    return txt or str(exc)


class DiscordGateway:
    """Archive sink and channel provisioning on top of discord.py.

    Forwarding only needs a webhook URL and an HTTP session; provisioning
    needs the running bot and the configured guild.
    """

    def __init__(self, bot: commands.Bot | None = None, guild_id: int | None = None) -> None:
        self.bot = bot
        self.guild_id = guild_id
        self._session: aiohttp.ClientSession | None = None

    def _http_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _send(self, webhook: discord.Webhook, payload: ArchivePayload) -> discord.WebhookMessage:
        return await webhook.send(
            payload.content or MISSING,
            username=payload.username,
            avatar_url=payload.avatar_url or MISSING,
            embeds=payload.embeds or MISSING,
            allowed_mentions=ALLOWED_MENTIONS,
            wait=True,
        )

    async def forward(self, destination: str, payload: ArchivePayload) -> str:
        """Post ``payload`` to the webhook at ``destination``.

        Returns the Discord message id. A single retry is made on HTTP 429.
        """

        try:
            webhook = discord.Webhook.from_url(destination, session=self._http_session())
        except ValueError as exc:
            raise UpstreamError(f"Invalid webhook URL: {exc}", service="discord") from exc

        try:
            try:
                sent = await self._send(webhook, payload)
            except discord.HTTPException as exc:
                if exc.status != 429:
                    raise
                retry_after = float(getattr(exc, "retry_after", 0) or 1.0)
                await asyncio.sleep(min(retry_after, 5.0))
                sent = await self._send(webhook, payload)
        except discord.HTTPException as exc:
            raise UpstreamError(
                f"Webhook send failed: {exc.status} {_discord_error(exc)}",
                service="discord",
                code=str(exc.status),
            ) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(f"Webhook send failed: {exc}", service="discord") from exc

        message_id = getattr(sent, "id", None)
        if message_id is None:
            raise UpstreamError("Webhook send returned no id", service="discord")
        return str(message_id)

    async def _guild(self) -> discord.Guild:
        if not is_discord_client_ready(self.bot):
            raise UpstreamError("Discord bot is not ready", service="discord")
        if not self.guild_id:
            raise UpstreamError("Discord guild id is not configured", service="discord")
        guild = self.bot.get_guild(self.guild_id)
        if guild is None:
            try:
                guild = await self.bot.fetch_guild(self.guild_id)
            except discord.HTTPException as exc:
                raise UpstreamError(
                    f"Guild lookup failed: {_discord_error(exc)}", service="discord"
                ) from exc
        return guild

    async def create_channel(self, name: str, description: str | None = None) -> ProvisionedChannel:
        guild = await self._guild()
        sanitized = sanitize_channel_name(name, DISCORD_NAME_LIMIT)
        topic = description[:DISCORD_TOPIC_LIMIT] if description else None
        try:
            channel = await guild.create_text_channel(sanitized, topic=topic)
            webhook = await channel.create_webhook(name=WEBHOOK_NAME)
        except discord.Forbidden as exc:
            raise UpstreamError(
                "Manage Channels and Manage Webhooks permissions are required",
                service="discord",
                code="403",
            ) from exc
        except discord.HTTPException as exc:
            raise UpstreamError(
                f"Channel creation failed: {_discord_error(exc)}", service="discord"
            ) from exc
        logger.info("Created Discord channel %s (%s)", channel.name, channel.id)
        return ProvisionedChannel(
            channel_id=str(channel.id),
            channel_name=channel.name,
            webhook_url=webhook.url,
        )

    async def delete_channel(self, channel_id: str) -> None:
        if not is_discord_client_ready(self.bot):
            raise UpstreamError("Discord bot is not ready", service="discord")
        try:
            channel = self.bot.get_channel(int(channel_id)) or await self.bot.fetch_channel(
                int(channel_id)
            )
            await channel.delete()
        except discord.HTTPException as exc:
            raise UpstreamError(
                f"Channel deletion failed: {_discord_error(exc)}", service="discord"
            ) from exc
        logger.info("Deleted Discord channel %s", channel_id)
