"""Conversion of Slack event payloads into canonical relay records."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ..db.models import MessageKind
from ..slack.ts import ts_to_datetime

logger = logging.getLogger(__name__)

# Message subtypes that still carry user content worth archiving.
RELAYED_SUBTYPES = {"thread_broadcast", "file_share"}


@dataclass
class Attachment:
    file_name: str | None = None
    file_url: str | None = None
    file_type: str | None = None
    file_size: int | None = None


@dataclass
class InboundMessage:
    source_message_id: str
    source_channel_id: str
    body: str
    sent_at: datetime
    author_id: str = ""
    author_name: str = ""
    avatar_url: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    thread_ts: str | None = None

    @property
    def kind(self) -> MessageKind:
        if self.thread_ts and self.thread_ts != self.source_message_id:
            return MessageKind.THREAD_REPLY
        if self.attachments:
            return MessageKind.FILE_SHARE
        return MessageKind.MESSAGE

    def attachments_json(self) -> str | None:
        if not self.attachments:
            return None
        return json.dumps([asdict(a) for a in self.attachments])


def _attachments(files: Any) -> list[Attachment]:
    if not isinstance(files, list):
        return []
    out: list[Attachment] = []
    for f in files:
        if not isinstance(f, Mapping):
            continue
        size = f.get("size")
        out.append(
            Attachment(
                file_name=f.get("name"),
                file_url=f.get("url_private"),
                file_type=f.get("mimetype"),
                file_size=int(size) if isinstance(size, (int, float)) else None,
            )
        )
    return out


def normalize_event(event: Mapping[str, Any]) -> InboundMessage | None:
    """Build an :class:`InboundMessage` from a Slack ``message`` event.

    Returns ``None`` for events that should not be relayed: bot messages,
    edits and other housekeeping subtypes, and events missing the message
    id, channel id or any content. Nothing is raised for malformed input.
    """

    if event.get("bot_id"):
        return None
    subtype = event.get("subtype")
    if subtype and subtype not in RELAYED_SUBTYPES:
        logger.debug("Ignoring Slack message subtype %s", subtype)
        return None

    ts = event.get("ts")
    channel = event.get("channel")
    text = event.get("text") or ""
    attachments = _attachments(event.get("files"))
    if not ts or not channel or not (text or attachments):
        logger.warning(
            "Dropping Slack event with missing fields ts=%s channel=%s has_body=%s",
            ts,
            channel,
            bool(text or attachments),
        )
        return None

    try:
        sent_at = ts_to_datetime(str(ts))
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Dropping Slack event with invalid ts %r", ts)
        return None

    return InboundMessage(
        source_message_id=str(ts),
        source_channel_id=str(channel),
        body=text,
        sent_at=sent_at,
        author_id=event.get("user") or "",
        author_name=event.get("username") or "",
        attachments=attachments,
        thread_ts=event.get("thread_ts"),
    )


def normalize_envelope(payload: Mapping[str, Any]) -> InboundMessage | None:
    """Unwrap an Events API ``event_callback`` and normalize its event."""

    if payload.get("type") != "event_callback":
        return None
    event = payload.get("event")
    if not isinstance(event, Mapping) or event.get("type") != "message":
        return None
    return normalize_event(event)
