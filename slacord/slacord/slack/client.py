from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from slack_sdk.errors import SlackApiError
from slack_sdk.http_retry.builtin_async_handlers import (
    AsyncConnectionErrorRetryHandler,
    AsyncRateLimitErrorRetryHandler,
    AsyncServerErrorRetryHandler,
)
from slack_sdk.web.async_client import AsyncWebClient

from ..channel_names import SLACK_NAME_LIMIT, SLACK_TOPIC_LIMIT, sanitize_channel_name
from ..errors import UpstreamError
from .ts import datetime_to_ts, ts_to_datetime

logger = logging.getLogger(__name__)


@dataclass
class LiveMessage:
    ts: str
    text: str
    username: str
    sent_at: datetime
    user_id: str = ""
    thread_ts: str | None = None


@dataclass
class HistoryPage:
    messages: list[LiveMessage] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None


@dataclass
class PostedMessage:
    ts: str
    channel_id: str
    sent_at: datetime


@dataclass
class SlackUser:
    id: str
    name: str
    avatar_url: str | None = None


def _error_code(exc: SlackApiError) -> str | None:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    try:
        return response.get("error")
    except Exception:
        return None


class SlackGateway:
    """Thin async wrapper over the Slack Web API.

    Every Slack failure surfaces as :class:`~slacord.errors.UpstreamError`
    with the Slack error code attached, so callers never deal with SDK types.
    """

    def __init__(self, token: str, client: AsyncWebClient | None = None) -> None:
        self.client = client or AsyncWebClient(
            token=token,
            retry_handlers=[
                AsyncRateLimitErrorRetryHandler(max_retry_count=3),
                AsyncServerErrorRetryHandler(max_retry_count=2),
                AsyncConnectionErrorRetryHandler(max_retry_count=2),
            ],
        )
        self._user_cache: dict[str, SlackUser] = {}

    async def _call(self, method: str, **kwargs: Any) -> Any:
        func = getattr(self.client, method)
        try:
            return await func(**kwargs)
        except SlackApiError as exc:
            code = _error_code(exc)
            logger.warning("Slack %s failed: %s", method, code or exc)
            raise UpstreamError(
                f"Slack {method} failed: {code or exc}", service="slack", code=code
            ) from exc
        except UpstreamError:
            raise
        except Exception as exc:
            logger.warning("Slack %s transport error: %s", method, exc)
            raise UpstreamError(f"Slack {method} failed: {exc}", service="slack") from exc

    async def get_user(self, user_id: str) -> SlackUser | None:
        if not user_id:
            return None
        cached = self._user_cache.get(user_id)
        if cached is not None:
            return cached
        resp = await self._call("users_info", user=user_id)
        data = resp.get("user") or {}
        profile = data.get("profile") or {}
        user = SlackUser(
            id=user_id,
            name=data.get("real_name") or data.get("name") or "Unknown User",
            avatar_url=profile.get("image_72"),
        )
        self._user_cache[user_id] = user
        return user

    async def post_message(
        self, channel_id: str, text: str, username: str | None = None
    ) -> PostedMessage:
        kwargs: dict[str, Any] = {"channel": channel_id, "text": text}
        if username:
            kwargs["username"] = username
        resp = await self._call("chat_postMessage", **kwargs)
        ts = resp.get("ts")
        if not ts:
            raise UpstreamError("Slack chat.postMessage returned no ts", service="slack")
        logger.info("Posted Slack message to %s: %.50s", channel_id, text)
        return PostedMessage(
            ts=ts,
            channel_id=resp.get("channel") or channel_id,
            sent_at=ts_to_datetime(ts),
        )

    async def history(
        self,
        channel_id: str,
        *,
        limit: int = 50,
        oldest: datetime | None = None,
        latest: datetime | None = None,
    ) -> HistoryPage:
        """Return one page of channel history, newest first."""

        kwargs: dict[str, Any] = {"channel": channel_id, "limit": limit}
        if oldest is not None:
            kwargs["oldest"] = datetime_to_ts(oldest)
        if latest is not None:
            kwargs["latest"] = datetime_to_ts(latest)
        resp = await self._call("conversations_history", **kwargs)
        messages: list[LiveMessage] = []
        for m in resp.get("messages") or []:
            ts = m.get("ts")
            if not ts:
                continue
            try:
                sent_at = ts_to_datetime(ts)
            except (TypeError, ValueError, OverflowError, OSError):
                logger.warning("Skipping Slack history entry with invalid ts %r", ts)
                continue
            messages.append(
                LiveMessage(
                    ts=ts,
                    text=m.get("text") or "",
                    username=m.get("username") or m.get("user") or "Unknown",
                    sent_at=sent_at,
                    user_id=m.get("user") or "",
                    thread_ts=m.get("thread_ts"),
                )
            )
        return HistoryPage(
            messages=messages,
            has_more=bool(resp.get("has_more")),
            next_cursor=messages[-1].ts if messages else None,
        )

    async def create_channel(self, name: str, description: str | None = None) -> tuple[str, str]:
        sanitized = sanitize_channel_name(name, SLACK_NAME_LIMIT)
        resp = await self._call("conversations_create", name=sanitized, is_private=False)
        channel = resp.get("channel") or {}
        channel_id = channel.get("id") or ""
        if description and channel_id:
            await self._call(
                "conversations_setTopic",
                channel=channel_id,
                topic=description[:SLACK_TOPIC_LIMIT],
            )
        logger.info("Created Slack channel %s (%s)", sanitized, channel_id)
        return channel_id, channel.get("name") or sanitized

    async def archive_channel(self, channel_id: str) -> None:
        await self._call("conversations_archive", channel=channel_id)
        logger.info("Archived Slack channel %s", channel_id)
