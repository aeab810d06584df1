"""Build the Discord webhook payload for an archived Slack message."""

from __future__ import annotations

from dataclasses import dataclass, field

import discord

from .relay.normalizer import Attachment

DISCORD_CONTENT_LIMIT = 2000
DISCORD_USERNAME_LIMIT = 80
DISCORD_EMBED_DESCRIPTION_LIMIT = 4096
DISCORD_EMBED_TOTAL_LIMIT = 6000
DISCORD_EMBED_COUNT_LIMIT = 10
DEFAULT_USERNAME = "Slack Archive Bot"
EMBED_COLOR = 0x5865F2


@dataclass
class ArchivePayload:
    content: str
    username: str
    avatar_url: str | None = None
    embeds: list[discord.Embed] = field(default_factory=list)


def _normalize_content(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")


def _take(text: str, limit: int) -> str:
    """Return the longest prefix of ``text`` within ``limit``.

    Splits at the last newline or space when the text has to be cut so words
    are not broken mid-stream.
    """

    if len(text) <= limit:
        return text
    head = text[:limit]
    split_pos = max(head.rfind("\n"), head.rfind(" "))
    if split_pos > 0:
        head = head[:split_pos]
    return head


def _split_overflow(text: str, budget: int, max_chunks: int) -> list[str]:
    chunks: list[str] = []
    remaining = text.lstrip()
    while remaining and len(chunks) < max_chunks and budget > 0:
        chunk = _take(remaining, min(DISCORD_EMBED_DESCRIPTION_LIMIT, budget))
        chunks.append(chunk)
        budget -= len(chunk)
        remaining = remaining[len(chunk):].lstrip()
    if remaining and chunks:
        last = chunks[-1]
        chunks[-1] = f"{last[:-1]}…" if last else "…"
    return chunks


def _attachment_embed(att: Attachment) -> discord.Embed:
    description = None
    if att.file_size is not None:
        description = f"File size: {att.file_size / 1024:.2f} KB"
    return discord.Embed(
        title=(att.file_name or "attachment")[:256],
        url=att.file_url,
        description=description,
        color=EMBED_COLOR,
    )


def build_archive_payload(
    *,
    body: str,
    author_name: str,
    avatar_url: str | None = None,
    attachments: list[Attachment] | None = None,
) -> ArchivePayload:
    """Construct the Discord payload for an archived message.

    The first ``DISCORD_CONTENT_LIMIT`` characters go into the message content;
    any overflow continues in description embeds. Attachments become link
    embeds after the overflow, within Discord's ten-embed limit.
    """

    normalized = _normalize_content(body or "")
    content = _take(normalized, DISCORD_CONTENT_LIMIT)
    attachments = attachments or []
    attachment_slots = min(len(attachments), DISCORD_EMBED_COUNT_LIMIT)

    embeds: list[discord.Embed] = []
    overflow = normalized[len(content):]
    if overflow.strip():
        for chunk in _split_overflow(
            overflow,
            DISCORD_EMBED_TOTAL_LIMIT,
            max(DISCORD_EMBED_COUNT_LIMIT - attachment_slots, 1),
        ):
            embeds.append(discord.Embed(description=chunk, color=EMBED_COLOR))

    for att in attachments[: DISCORD_EMBED_COUNT_LIMIT - len(embeds)]:
        embeds.append(_attachment_embed(att))

    username = (author_name or DEFAULT_USERNAME)[:DISCORD_USERNAME_LIMIT]
    return ArchivePayload(
        content=content,
        username=username,
        avatar_url=avatar_url,
        embeds=embeds,
    )
