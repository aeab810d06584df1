"""Composition root for the long-lived relay components."""

from __future__ import annotations

from dataclasses import dataclass

from discord.ext import commands
from slack_sdk.signature import SignatureVerifier

from .config import AppConfig
from .db.session import get_session
from .discordbot.gateway import DiscordGateway
from .relay.dispatcher import Dispatcher, SessionFactory
from .relay.retention import RetentionRouter
from .slack.client import SlackGateway


@dataclass
class RelayServices:
    config: AppConfig
    slack: SlackGateway
    discord: DiscordGateway
    dispatcher: Dispatcher
    retention: RetentionRouter
    signature_verifier: SignatureVerifier | None = None
    session_factory: SessionFactory = get_session

    async def aclose(self) -> None:
        await self.dispatcher.drain()
        await self.discord.close()


def build_services(
    cfg: AppConfig,
    *,
    bot: commands.Bot | None = None,
    session_factory: SessionFactory = get_session,
) -> RelayServices:
    slack = SlackGateway(cfg.slack.bot_token)
    discord = DiscordGateway(bot, cfg.discord.guild_id)
    dispatcher = Dispatcher(session_factory, discord, slack)
    retention = RetentionRouter(slack, cfg.relay.retention_days)
    verifier = (
        SignatureVerifier(cfg.slack.signing_secret) if cfg.slack.signing_secret else None
    )
    return RelayServices(
        config=cfg,
        slack=slack,
        discord=discord,
        dispatcher=dispatcher,
        retention=retention,
        signature_verifier=verifier,
        session_factory=session_factory,
    )
