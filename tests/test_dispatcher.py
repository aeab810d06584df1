import asyncio
from datetime import datetime

import pytest
from sqlalchemy import func, select

from slacord.db.models import ArchiveState, ArchivedMessage, ChannelMapping
from slacord.db.session import get_session
from slacord.relay.dispatcher import Dispatcher, DispatchStatus
from slacord.relay.normalizer import normalize_event
from slacord.slack.client import SlackUser

from fakes import WEBHOOK, FakeSink, FakeSlack, seed_mapping


def _event(ts="100.1", channel="C1", text="hi", user="U1"):
    return {"type": "message", "ts": ts, "channel": channel, "text": text, "user": user}


async def _rows():
    async with get_session() as session:
        result = await session.scalars(select(ArchivedMessage).order_by(ArchivedMessage.id))
        return list(result)


@pytest.mark.asyncio
async def test_message_is_persisted_then_forwarded(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack()
    slack.users["U1"] = SlackUser(id="U1", name="Alice Kim", avatar_url="https://a/1.png")
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, slack)

    result = await dispatcher.dispatch(normalize_event(_event()))
    assert result.status is DispatchStatus.PERSISTED
    assert result.task is not None

    await dispatcher.drain()
    assert dispatcher.pending_forwards == 0

    rows = await _rows()
    assert len(rows) == 1
    row = rows[0]
    assert row.source_message_id == "100.1"
    assert row.mapping_id == mapping_id
    assert row.author_name == "Alice Kim"
    assert row.author_avatar_url == "https://a/1.png"
    assert row.state is ArchiveState.ARCHIVED
    assert row.archived_at >= row.sent_at

    assert len(sink.sent) == 1
    destination, payload = sink.sent[0]
    assert destination == WEBHOOK
    assert payload.content == "hi"
    assert payload.username == "Alice Kim"
    assert row.archive_message_id == "900000000000000001"

    async with get_session() as session:
        mapping = await session.get(ChannelMapping, mapping_id)
        assert mapping.message_count == 1
        assert mapping.last_archived_at == row.archived_at


@pytest.mark.asyncio
async def test_redelivery_is_a_noop(db):
    await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, FakeSlack())

    first = await dispatcher.dispatch(normalize_event(_event()))
    await dispatcher.drain()
    second = await dispatcher.dispatch(normalize_event(_event()))
    await dispatcher.drain()

    assert first.status is DispatchStatus.PERSISTED
    assert second.status is DispatchStatus.DUPLICATE
    assert second.task is None
    assert len(await _rows()) == 1
    assert len(sink.sent) == 1


class _RacingSlack(FakeSlack):
    """Commits a competing delivery of the same message while the author
    lookup is in flight, after the duplicate pre-check has already passed."""

    def __init__(self, team_id, mapping_id):
        super().__init__()
        self.team_id = team_id
        self.mapping_id = mapping_id

    async def get_user(self, user_id):
        async with get_session() as session:
            session.add(
                ArchivedMessage(
                    team_id=self.team_id,
                    mapping_id=self.mapping_id,
                    source_message_id="100.1",
                    source_channel_id="C1",
                    author_name="racer",
                    body="hi",
                    archive_channel_id="D1",
                    sent_at=datetime(1970, 1, 1, 0, 1, 40),
                )
            )
            await session.commit()
        return await super().get_user(user_id)


@pytest.mark.asyncio
async def test_insert_race_resolves_to_duplicate(db):
    _, team_id, mapping_id = await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, _RacingSlack(team_id, mapping_id))

    result = await dispatcher.handle_event(_event())
    await dispatcher.drain()

    assert result.status is DispatchStatus.DUPLICATE
    assert result.task is None
    rows = await _rows()
    assert [r.author_name for r in rows] == ["racer"]
    assert sink.sent == []


@pytest.mark.asyncio
async def test_concurrent_redelivery_forwards_once(db):
    await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, FakeSlack())

    results = await asyncio.gather(
        dispatcher.handle_event(_event()), dispatcher.handle_event(_event())
    )
    await dispatcher.drain()

    assert sorted(r.status.value for r in results) == ["duplicate", "persisted"]
    assert len(await _rows()) == 1
    assert len(sink.sent) == 1


@pytest.mark.asyncio
async def test_unmapped_channel_is_dropped(db):
    await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, FakeSlack())

    result = await dispatcher.dispatch(normalize_event(_event(channel="C404")))
    await dispatcher.drain()

    assert result.status is DispatchStatus.UNMAPPED
    assert await _rows() == []
    assert sink.sent == []


@pytest.mark.asyncio
async def test_inactive_mapping_is_treated_as_unmapped(db):
    _, _, mapping_id = await seed_mapping()
    async with get_session() as session:
        mapping = await session.get(ChannelMapping, mapping_id)
        mapping.is_active = False
        await session.commit()
    dispatcher = Dispatcher(get_session, FakeSink(), FakeSlack())

    result = await dispatcher.dispatch(normalize_event(_event()))
    assert result.status is DispatchStatus.UNMAPPED


@pytest.mark.asyncio
async def test_forward_failure_leaves_row_pending_and_reports(db):
    await seed_mapping()
    dispatcher = Dispatcher(get_session, FakeSink(fail=True), FakeSlack())
    seen = []
    dispatcher.add_error_callback(seen.append)

    result = await dispatcher.dispatch(normalize_event(_event()))
    assert result.status is DispatchStatus.PERSISTED
    await dispatcher.drain()

    rows = await _rows()
    assert len(rows) == 1
    assert rows[0].state is ArchiveState.PENDING
    assert rows[0].archived_at is None
    assert len(seen) == 1
    assert seen[0].message_id == rows[0].id
    assert seen[0].source_message_id == "100.1"
    assert list(dispatcher.failures) == seen


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_others(db):
    await seed_mapping()
    dispatcher = Dispatcher(get_session, FakeSink(fail=True), FakeSlack())
    seen = []

    def broken(_failure):
        raise RuntimeError("boom")

    dispatcher.add_error_callback(broken)
    dispatcher.add_error_callback(seen.append)
    await dispatcher.dispatch(normalize_event(_event()))
    await dispatcher.drain()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_author_lookup_failure_falls_back_to_event_name(db):
    await seed_mapping()
    dispatcher = Dispatcher(get_session, FakeSink(), FakeSlack(fail=True))
    event = {**_event(), "username": "webhook-user"}

    await dispatcher.dispatch(normalize_event(event))
    await dispatcher.drain()

    rows = await _rows()
    assert rows[0].author_name == "webhook-user"


@pytest.mark.asyncio
async def test_handle_event_ignores_bot_messages(db):
    await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, FakeSlack())

    assert await dispatcher.handle_event({**_event(), "bot_id": "B1"}) is None
    result = await dispatcher.handle_event(_event(ts="100.2"))
    await dispatcher.drain()

    assert result.status is DispatchStatus.PERSISTED
    async with get_session() as session:
        count = await session.scalar(select(func.count(ArchivedMessage.id)))
    assert count == 1


class _AckRecorder:
    def __init__(self):
        self.acks = []

    async def send_socket_mode_response(self, response):
        self.acks.append(response.envelope_id)


@pytest.mark.asyncio
async def test_socket_mode_listener_persists_then_acks(db):
    from slack_sdk.socket_mode.request import SocketModeRequest

    from slacord.slack.socket_mode import make_listener

    await seed_mapping()
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, FakeSlack())
    listener = make_listener(dispatcher)
    client = _AckRecorder()

    await listener(
        client,
        SocketModeRequest(
            type="events_api", envelope_id="env-1", payload={"event": _event()}
        ),
    )
    await listener(
        client, SocketModeRequest(type="slash_commands", envelope_id="env-2", payload={})
    )
    await dispatcher.drain()

    assert client.acks == ["env-1", "env-2"]
    assert len(await _rows()) == 1
    assert len(sink.sent) == 1
