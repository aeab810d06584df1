from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select, update

from slacord.db.models import ArchivedMessage, ChannelMapping, InviteLink, utcnow
from slacord.db.session import get_session
from slacord.errors import UpstreamError
from slacord.http.api import create_app

from fakes import API_TOKEN, seed_mapping

OWNER = {"X-Api-Key": API_TOKEN}


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _register(client, email: str, username: str) -> dict[str, str]:
    resp = await client.post("/api/users", json={"email": email, "username": username})
    return {"X-Api-Key": resp.json()["apiKey"]}


@pytest.mark.asyncio
async def test_create_team_provisions_channels(db, make_services, slack, sink):
    await seed_mapping()
    app = create_app(make_services())

    async with _client(app) as client:
        resp = await client.post(
            "/api/teams", json={"name": "개발 팀", "description": "backend"}, headers=OWNER
        )
        teams = await client.get("/api/teams", headers=OWNER)

    assert resp.status_code == 201
    data = resp.json()
    assert data["team"]["name"] == "개발 팀"
    assert data["mapping"]["sourceChannelId"] == "CNEW1"
    assert data["mapping"]["archiveChannelId"] == "DNEW1"
    assert "archiveDestination" not in data["mapping"]
    assert slack.created == ["개발 팀"]
    assert sink.channels == ["개발 팀"]
    assert {t["name"] for t in teams.json()} == {"team-C1", "개발 팀"}


@pytest.mark.asyncio
async def test_create_team_maps_slack_errors(db, make_services, slack, sink):
    await seed_mapping()
    app = create_app(make_services())
    slack.create_error = UpstreamError(
        "Slack conversations_create failed: name_taken", service="slack", code="name_taken"
    )

    async with _client(app) as client:
        taken = await client.post("/api/teams", json={"name": "dupe"}, headers=OWNER)
        existing = await client.post("/api/teams", json={"name": "team-C1"}, headers=OWNER)

    assert taken.status_code == 400
    assert "already exists" in taken.json()["detail"]
    assert existing.status_code == 409
    assert sink.channels == []


@pytest.mark.asyncio
async def test_discord_failure_rolls_back_slack_channel(db, make_services, slack, sink):
    await seed_mapping()
    app = create_app(make_services())

    async def broken(name, description=None):
        raise UpstreamError("Discord bot is not ready", service="discord")

    sink.create_channel = broken

    async with _client(app) as client:
        resp = await client.post("/api/teams", json={"name": "ops"}, headers=OWNER)

    assert resp.status_code == 502
    assert slack.archived == ["CNEW1"]


@pytest.mark.asyncio
async def test_invite_join_and_member_management(db, make_services):
    _, team_id, _ = await seed_mapping()
    app = create_app(make_services())

    async with _client(app) as client:
        bob = await _register(client, "bob@example.com", "bob")
        carol = await _register(client, "carol@example.com", "carol")
        dave = await _register(client, "dave@example.com", "dave")

        assert (await client.get(f"/api/teams/{team_id}", headers=bob)).status_code == 403

        invite = await client.post(f"/api/teams/{team_id}/invite?maxUses=2", headers=OWNER)
        assert invite.status_code == 200
        token = invite.json()["inviteToken"]
        assert len(token) == 64
        assert invite.json()["inviteUrl"].endswith(token)

        joined = await client.post(f"/api/teams/join/{token}", headers=bob)
        assert joined.json()["id"] == team_id
        again = await client.post(f"/api/teams/join/{token}", headers=bob)
        assert again.status_code == 409
        assert (await client.post(f"/api/teams/join/{token}", headers=carol)).status_code == 200
        exhausted = await client.post(f"/api/teams/join/{token}", headers=dave)
        assert exhausted.status_code == 400
        unknown = await client.post("/api/teams/join/nope", headers=dave)
        assert unknown.status_code == 400

        members = await client.get(f"/api/teams/{team_id}/members", headers=bob)
        assert {(m["username"], m["role"]) for m in members.json()} == {
            ("alice", "owner"),
            ("bob", "member"),
            ("carol", "member"),
        }

        forbidden = await client.delete(f"/api/teams/{team_id}/members/1", headers=bob)
        assert forbidden.status_code == 403
        owner_removal = await client.delete(
            f"/api/teams/{team_id}/members/1", headers=OWNER
        )
        assert owner_removal.status_code == 400
        bob_id = next(m["userId"] for m in members.json() if m["username"] == "bob")
        removed = await client.delete(
            f"/api/teams/{team_id}/members/{bob_id}", headers=OWNER
        )
        assert removed.status_code == 204
        assert (await client.get(f"/api/teams/{team_id}", headers=bob)).status_code == 403


@pytest.mark.asyncio
async def test_expired_and_deactivated_invites_are_rejected(db, make_services):
    _, team_id, _ = await seed_mapping()
    app = create_app(make_services())

    async with _client(app) as client:
        bob = await _register(client, "bob@example.com", "bob")
        token = (await client.post(f"/api/teams/{team_id}/invite", headers=OWNER)).json()[
            "inviteToken"
        ]
        async with get_session() as session:
            await session.execute(
                update(InviteLink).values(expires_at=utcnow() - timedelta(days=1))
            )
            await session.commit()
        expired = await client.post(f"/api/teams/join/{token}", headers=bob)

        token = (await client.post(f"/api/teams/{team_id}/invite", headers=OWNER)).json()[
            "inviteToken"
        ]
        assert (
            await client.delete(f"/api/teams/{team_id}/invite", headers=OWNER)
        ).status_code == 204
        inactive = await client.post(f"/api/teams/join/{token}", headers=bob)

    assert expired.status_code == 400
    assert "expired" in expired.json()["detail"]
    assert inactive.status_code == 400


@pytest.mark.asyncio
async def test_mapping_crud_and_team_deletion_cascade(db, make_services):
    _, team_id, mapping_id = await seed_mapping()
    async with get_session() as session:
        session.add(
            ArchivedMessage(
                team_id=team_id,
                mapping_id=mapping_id,
                source_message_id="300.1",
                source_channel_id="C1",
                author_name="alice",
                body="keep me",
                archive_channel_id="D1",
                sent_at=utcnow(),
            )
        )
        await session.commit()
    app = create_app(make_services())

    async with _client(app) as client:
        created = await client.post(
            f"/api/teams/{team_id}/mappings",
            json={
                "name": "random",
                "sourceChannelId": "C9",
                "archiveChannelId": "D9",
                "archiveDestination": "https://discord.com/api/webhooks/9/x",
            },
            headers=OWNER,
        )
        assert created.status_code == 201
        duplicate = await client.post(
            f"/api/teams/{team_id}/mappings",
            json={
                "name": "other",
                "sourceChannelId": "C9",
                "archiveChannelId": "D9",
                "archiveDestination": "https://discord.com/api/webhooks/9/x",
            },
            headers=OWNER,
        )
        assert duplicate.status_code == 409

        listed = await client.get(f"/api/teams/{team_id}/mappings", headers=OWNER)
        assert {m["name"] for m in listed.json()} == {"general", "random"}

        updated = await client.put(
            f"/api/mappings/{mapping_id}", json={"isActive": False}, headers=OWNER
        )
        assert updated.json()["isActive"] is False

        deleted = await client.delete(f"/api/mappings/{mapping_id}", headers=OWNER)
        assert deleted.status_code == 204
        async with get_session() as session:
            row = await session.scalar(select(ArchivedMessage))
            assert row.mapping_id is None

        gone = await client.delete(f"/api/teams/{team_id}", headers=OWNER)
        assert gone.status_code == 204

    async with get_session() as session:
        assert await session.scalar(select(func.count(ArchivedMessage.id))) == 0
        assert await session.scalar(select(func.count(ChannelMapping.id))) == 0
