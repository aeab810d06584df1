from datetime import datetime, timedelta

import pytest

from slacord.db.models import ArchivedMessage, ChannelMapping
from slacord.db.session import get_session
from slacord.errors import ValidationError
from slacord.relay.retention import SOURCE_ARCHIVE, SOURCE_LIVE, RetentionRouter
from slacord.slack.ts import datetime_to_ts

from fakes import FakeSlack, live, seed_mapping

NOW = datetime(2024, 6, 1, 12, 0, 0)


def _ts(dt: datetime) -> str:
    return datetime_to_ts(dt)


async def _mapping(mapping_id: int) -> ChannelMapping:
    async with get_session() as session:
        return await session.get(ChannelMapping, mapping_id)


async def _archive(mapping_id: int, team_id: int, count: int, start: datetime, *, pending=()):
    async with get_session() as session:
        for i in range(count):
            sent_at = start + timedelta(minutes=i)
            session.add(
                ArchivedMessage(
                    team_id=team_id,
                    mapping_id=mapping_id,
                    source_message_id=_ts(sent_at),
                    source_channel_id="C1",
                    author_id="U1",
                    author_name="alice",
                    body=f"old {i}",
                    archive_channel_id="D1",
                    archive_message_id=None if i in pending else str(5000 + i),
                    sent_at=sent_at,
                    archived_at=None if i in pending else sent_at,
                )
            )
        await session.commit()


@pytest.mark.asyncio
async def test_live_read_with_few_messages_has_no_more(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack(
        [
            live(_ts(NOW - timedelta(hours=2)), "two"),
            live(_ts(NOW - timedelta(hours=1)), "one"),
        ]
    )
    router = RetentionRouter(slack, 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        page = await router.read(session, mapping, None, limit=50)

    assert page.source == SOURCE_LIVE
    assert [m.body for m in page.messages] == ["one", "two"]
    assert all(m.source == SOURCE_LIVE for m in page.messages)
    assert page.has_more is False
    call = slack.history_calls[0]
    assert call["oldest"] == NOW - timedelta(days=90)
    assert call["latest"] == NOW
    assert call["limit"] == 50


@pytest.mark.asyncio
async def test_live_read_reports_more_when_page_is_full(db):
    _, _, mapping_id = await seed_mapping()
    slack = FakeSlack([live(_ts(NOW - timedelta(minutes=i + 1)), f"m{i}") for i in range(5)])
    router = RetentionRouter(slack, 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        page = await router.read(session, mapping, None, limit=2)

    assert [m.body for m in page.messages] == ["m0", "m1"]
    assert page.has_more is True
    assert page.next_cursor == page.messages[-1].id


@pytest.mark.asyncio
async def test_live_error_yields_empty_page(db):
    _, _, mapping_id = await seed_mapping()
    router = RetentionRouter(FakeSlack(fail=True), 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        page = await router.read(session, mapping, None, limit=10)

    assert page.source == SOURCE_LIVE
    assert page.messages == []
    assert page.has_more is False


@pytest.mark.asyncio
async def test_before_cutoff_reads_archive_only(db):
    _, team_id, mapping_id = await seed_mapping()
    old = NOW - timedelta(days=200)
    await _archive(mapping_id, team_id, 5, old)
    slack = FakeSlack([live(_ts(NOW - timedelta(hours=1)), "recent")])
    router = RetentionRouter(slack, 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        page = await router.read(session, mapping, NOW - timedelta(days=100), limit=3)

    assert slack.history_calls == []
    assert page.source == SOURCE_ARCHIVE
    assert [m.body for m in page.messages] == ["old 4", "old 3", "old 2"]
    assert all(m.source == SOURCE_ARCHIVE for m in page.messages)
    assert page.has_more is True
    assert page.next_cursor == "5002"

    async with get_session() as session:
        before = await router.resolve_before(session, page.next_cursor, mapping)
        assert before == old + timedelta(minutes=2)
        rest = await router.read(session, mapping, before, limit=3)

    assert [m.body for m in rest.messages] == ["old 1", "old 0"]
    assert rest.has_more is False
    assert slack.history_calls == []


@pytest.mark.asyncio
async def test_pending_row_cursor_falls_back_to_slack_ts(db):
    _, team_id, mapping_id = await seed_mapping()
    old = NOW - timedelta(days=200)
    await _archive(mapping_id, team_id, 2, old, pending={0})
    router = RetentionRouter(FakeSlack(), 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        page = await router.read(session, mapping, NOW - timedelta(days=100), limit=2)
        assert page.next_cursor == _ts(old)
        before = await router.resolve_before(session, page.next_cursor, mapping)
        assert before == old
        assert (await router.read(session, mapping, before, limit=2)).messages == []


@pytest.mark.asyncio
async def test_resolve_before_variants(db):
    _, _, mapping_id = await seed_mapping()
    router = RetentionRouter(FakeSlack(), 90, clock=lambda: NOW)
    mapping = await _mapping(mapping_id)

    async with get_session() as session:
        assert await router.resolve_before(session, None) == NOW
        assert await router.resolve_before(session, "") == NOW
        assert await router.resolve_before(
            session, "2024-01-01T00:00:00Z"
        ) == datetime(2024, 1, 1)
        assert await router.resolve_before(
            session, "2024-01-01T09:00:00+09:00"
        ) == datetime(2024, 1, 1)
        assert await router.resolve_before(session, "1704067200.000000") == datetime(
            2024, 1, 1
        )
        with pytest.raises(ValidationError):
            await router.resolve_before(session, "123456", mapping)
        with pytest.raises(ValidationError):
            await router.resolve_before(session, "yesterday")
        with pytest.raises(ValidationError):
            await router.resolve_before(session, "99999999999999999999.1")
