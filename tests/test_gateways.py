from types import SimpleNamespace

import discord
import pytest
from slack_sdk.errors import SlackApiError

import slacord.discordbot.gateway as gateway_mod
from slacord.bridge import build_archive_payload
from slacord.discordbot.gateway import DiscordGateway
from slacord.errors import UpstreamError
from slacord.slack.client import SlackGateway

WEBHOOK = "https://discord.com/api/webhooks/123/abc"


class FakeWebClient:
    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def __getattr__(self, method):
        async def _call(**kwargs):
            self.calls.append((method, kwargs))
            if self.error is not None:
                raise self.error
            return self.responses.get(method, {})

        return _call


class FakeWebhook:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.sends = []

    async def send(self, content, **kwargs):
        self.sends.append((content, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _http_error(status: int) -> discord.HTTPException:
    return discord.HTTPException(
        SimpleNamespace(status=status, reason="error"), {"message": "nope", "code": 0}
    )


@pytest.mark.asyncio
async def test_forward_retries_once_on_rate_limit(monkeypatch):
    hook = FakeWebhook([_http_error(429), SimpleNamespace(id=42)])
    monkeypatch.setattr(discord.Webhook, "from_url", lambda url, session: hook)

    async def no_sleep(_delay):
        return None

    monkeypatch.setattr(gateway_mod.asyncio, "sleep", no_sleep)
    gw = DiscordGateway()
    payload = build_archive_payload(body="hi", author_name="Alice")

    assert await gw.forward(WEBHOOK, payload) == "42"
    assert len(hook.sends) == 2
    assert hook.sends[0][0] == "hi"
    assert hook.sends[0][1]["wait"] is True
    assert hook.sends[0][1]["username"] == "Alice"
    await gw.close()


@pytest.mark.asyncio
async def test_forward_failure_becomes_upstream_error(monkeypatch):
    hook = FakeWebhook([_http_error(500)])
    monkeypatch.setattr(discord.Webhook, "from_url", lambda url, session: hook)
    gw = DiscordGateway()

    with pytest.raises(UpstreamError) as excinfo:
        await gw.forward(WEBHOOK, build_archive_payload(body="hi", author_name="A"))
    assert excinfo.value.service == "discord"
    assert excinfo.value.code == "500"
    assert len(hook.sends) == 1
    await gw.close()


@pytest.mark.asyncio
async def test_provisioning_requires_ready_bot():
    gw = DiscordGateway(bot=None, guild_id=1)
    with pytest.raises(UpstreamError):
        await gw.create_channel("ops")


@pytest.mark.asyncio
async def test_slack_user_lookup_is_cached():
    client = FakeWebClient(
        {
            "users_info": {
                "user": {
                    "name": "alice",
                    "real_name": "Alice Kim",
                    "profile": {"image_72": "https://a/72.png"},
                }
            }
        }
    )
    gw = SlackGateway("xoxb-test", client=client)

    user = await gw.get_user("U1")
    again = await gw.get_user("U1")

    assert user.name == "Alice Kim"
    assert user.avatar_url == "https://a/72.png"
    assert again is user
    assert [c[0] for c in client.calls] == ["users_info"]


@pytest.mark.asyncio
async def test_slack_history_maps_messages():
    client = FakeWebClient(
        {
            "conversations_history": {
                "messages": [
                    {"ts": "200.2", "text": "b", "user": "U2"},
                    {"ts": "200.1", "text": "a", "username": "hook"},
                    {"ts": "200.0"},
                ],
                "has_more": True,
            }
        }
    )
    gw = SlackGateway("xoxb-test", client=client)

    page = await gw.history("C1", limit=3)

    assert [m.username for m in page.messages] == ["U2", "hook", "Unknown"]
    assert page.messages[0].user_id == "U2"
    assert page.has_more is True
    assert page.next_cursor == "200.0"
    assert client.calls[0] == ("conversations_history", {"channel": "C1", "limit": 3})


@pytest.mark.asyncio
async def test_slack_api_error_carries_code():
    error = SlackApiError("failed", {"ok": False, "error": "name_taken"})
    gw = SlackGateway("xoxb-test", client=FakeWebClient(error=error))

    with pytest.raises(UpstreamError) as excinfo:
        await gw.create_channel("General Chat")
    assert excinfo.value.code == "name_taken"
    assert excinfo.value.service == "slack"


@pytest.mark.asyncio
async def test_slack_history_skips_unparseable_ts():
    client = FakeWebClient(
        {
            "conversations_history": {
                "messages": [
                    {"ts": "300.1", "text": "ok", "user": "U1"},
                    {"ts": "1e400", "text": "bad", "user": "U1"},
                    {"ts": "not-a-ts", "text": "bad", "user": "U1"},
                ]
            }
        }
    )
    gw = SlackGateway("xoxb-test", client=client)

    page = await gw.history("C1")

    assert [m.text for m in page.messages] == ["ok"]
    assert page.next_cursor == "300.1"
