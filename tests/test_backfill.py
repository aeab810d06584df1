import pytest
from sqlalchemy import select

from slacord.db.models import ArchivedMessage, ArchiveState, ChannelMapping
from slacord.db.session import get_session
from slacord.errors import NotFoundError, ValidationError
from slacord.relay.backfill import backfill_mapping
from slacord.relay.dispatcher import Dispatcher
from slacord.relay.normalizer import normalize_event

from fakes import FakeSink, FakeSlack, live, seed_mapping


async def _rows():
    async with get_session() as session:
        result = await session.scalars(
            select(ArchivedMessage).order_by(ArchivedMessage.sent_at)
        )
        return list(result)


@pytest.mark.asyncio
async def test_backfill_imports_unknown_messages_oldest_first(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack([live("100.1", "first"), live("100.2", "second"), live("100.3", "third")])
    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, slack)
    await dispatcher.dispatch(normalize_event(
        {"ts": "100.2", "channel": "C1", "text": "second", "user": "U1"}
    ))
    await dispatcher.drain()
    sink.sent.clear()

    result = await backfill_mapping(get_session, dispatcher, slack, mapping_id, limit=10)

    assert result.backup_count == 2
    assert result.retried == 0
    assert [p.content for _, p in sink.sent] == ["first", "third"]
    rows = await _rows()
    assert [r.source_message_id for r in rows] == ["100.1", "100.2", "100.3"]
    assert all(r.state is ArchiveState.ARCHIVED for r in rows)


@pytest.mark.asyncio
async def test_backfill_retries_pending_rows(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack()
    failing = Dispatcher(get_session, FakeSink(fail=True), slack)
    await failing.dispatch(normalize_event(
        {"ts": "100.1", "channel": "C1", "text": "stuck", "user": "U1"}
    ))
    await failing.drain()
    assert (await _rows())[0].state is ArchiveState.PENDING

    sink = FakeSink()
    dispatcher = Dispatcher(get_session, sink, slack)
    result = await backfill_mapping(get_session, dispatcher, slack, mapping_id)

    assert result.retried == 1
    assert result.backup_count == 0
    rows = await _rows()
    assert rows[0].state is ArchiveState.ARCHIVED
    async with get_session() as session:
        mapping = await session.get(ChannelMapping, mapping_id)
        assert mapping.message_count == 1


@pytest.mark.asyncio
async def test_backfill_rejects_unknown_and_inactive_mappings(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack()
    dispatcher = Dispatcher(get_session, FakeSink(), slack)

    with pytest.raises(NotFoundError):
        await backfill_mapping(get_session, dispatcher, slack, 999)

    async with get_session() as session:
        mapping = await session.get(ChannelMapping, mapping_id)
        mapping.is_active = False
        await session.commit()
    with pytest.raises(ValidationError):
        await backfill_mapping(get_session, dispatcher, slack, mapping_id)
