"""
Guild and notification tests.

Validates:
- maxMembers clamping and tag normalization
- ranking order (score desc, then name) and caller's rank
- create auto-approves the owner
- join: pending for others + owner notified; idempotent; full guild -> 409;
  a lost unique-constraint race returns the winning row
- leave: owner cannot leave; non-member -> 404
- owner-only actions return 403 NOT_OWNER for everyone else
- approve flips status and notifies the applicant; reject deletes
- notifications list / unread-count / read / read-all
"""

import pytest
from sqlalchemy.exc import IntegrityError

from tastelog.api.db.models import Guild, GuildMembership, Notification
from tastelog.api.routers.guilds import clamp_max_members, normalize_tags, rank_members
from tastelog.api.tests.conftest import (
    _make_obj,
    make_guild,
    make_membership,
    make_notification,
    make_user,
)

pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        (None, 20),
        ("", 20),
        ("abc", 20),
        (True, 20),
        (1, 2),
        (0, 2),
        (50, 50),
        ("12", 12),
        (12.7, 12),
        (1000, 200),
    ])
    async def test_clamp_max_members(self, value, expected):
        assert clamp_max_members(value) == expected

    async def test_normalize_tags(self):
        tags = [" a ", "", None, 3, "b", "c", "d", "e", "f", "g", "h", "i"]
        assert normalize_tags(tags) == ["a", "3", "b", "c", "d", "e", "f", "g"]
        assert normalize_tags(None) == []

    async def test_rank_members_orders_by_score_then_name(self):
        rows = [
            ("u1", "Charlie", "c@x", 10),
            ("u2", "alice", "a@x", 30),
            ("u3", "Bob", "b@x", 10),
            ("u4", None, "zed@x", None),
        ]
        ranking = rank_members(rows, "u4")

        assert [e["userId"] for e in ranking["top3"]] == ["u2", "u3", "u1"]
        assert [e["rank"] for e in ranking["top3"]] == [1, 2, 3]
        assert ranking["myRank"]["rank"] == 4
        assert ranking["myRank"]["score"] == 0

    async def test_rank_members_anonymous(self):
        assert rank_members([("u1", "A", "a@x", 1)], None)["myRank"] is None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:

    async def test_list_with_member_counts(self, anon_client, mock_session):
        guild = _make_obj(make_guild())
        mock_session.returns_rows([(guild, 4)])

        resp = await anon_client.get("/api/guilds")

        guilds = resp.json()["guilds"]
        assert guilds[0]["id"] == guild.id
        assert guilds[0]["memberCount"] == 4
        assert guilds[0]["tags"] == ["coffee"]

    async def test_get_guild(self, anon_client, mock_session):
        guild = _make_obj(make_guild())
        mock_session.returns_one(guild).returns_scalar(3)

        resp = await anon_client.get(f"/api/guilds/{guild.id}")

        assert resp.json()["guild"]["memberCount"] == 3

    async def test_get_missing_guild(self, anon_client, mock_session):
        mock_session.returns_none()
        resp = await anon_client.get("/api/guilds/missing")
        assert resp.status_code == 404

    async def test_my_status_prefers_approved(self, client, mock_session, current_user):
        pending_guild = _make_obj(make_guild(name="Pending One"))
        approved_guild = _make_obj(make_guild(name="Approved One"))
        mock_session.returns_rows([
            (_make_obj(make_membership(user_id=current_user.id, status="PENDING")), pending_guild),
            (_make_obj(make_membership(user_id=current_user.id, status="APPROVED")), approved_guild),
        ])

        resp = await client.get("/api/guilds/me")

        body = resp.json()
        assert body["status"] == "APPROVED"
        assert body["guild"]["name"] == "Approved One"

    async def test_my_status_none(self, client, mock_session):
        mock_session.returns_rows([])
        resp = await client.get("/api/guilds/me")
        assert resp.json() == {"ok": True, "status": "NONE", "guild": None}

    async def test_members_flag_owner(self, anon_client, mock_session):
        owner = _make_obj(make_user(name="Owner"))
        member = _make_obj(make_user(name="Member"))
        guild = _make_obj(make_guild(owner_id=owner.id))
        mock_session.returns_one(guild).returns_rows([
            (_make_obj(make_membership(user_id=owner.id)), owner),
            (_make_obj(make_membership(user_id=member.id)), member),
        ])

        resp = await anon_client.get(f"/api/guilds/{guild.id}/members")

        members = resp.json()["members"]
        assert [m["isOwner"] for m in members] == [True, False]

    async def test_ranking_endpoint(self, anon_client, mock_session):
        guild = _make_obj(make_guild())
        mock_session.returns_one(guild).returns_rows([("u1", "A", "a@x", 5), ("u2", "B", "b@x", 9)])

        resp = await anon_client.get(f"/api/guilds/{guild.id}/ranking")

        body = resp.json()
        assert body["myRank"] is None
        assert [e["userId"] for e in body["top3"]] == ["u2", "u1"]


# ---------------------------------------------------------------------------
# Create / join / leave
# ---------------------------------------------------------------------------

class TestMembershipFlow:

    async def test_create_auto_approves_owner(self, client, mock_session, current_user):
        resp = await client.post(
            "/api/guilds", json={"name": " Night Owls ", "maxMembers": 500, "tags": ["late", ""]}
        )

        assert resp.status_code == 201
        body = resp.json()["guild"]
        assert body["name"] == "Night Owls"
        assert body["maxMembers"] == 200
        assert body["memberCount"] == 1
        assert body["tags"] == ["late"]

        guild = mock_session.added(Guild)[0]
        membership = mock_session.added(GuildMembership)[0]
        assert membership.guildId == guild.id
        assert membership.userId == current_user.id
        assert membership.status == "APPROVED"

    async def test_create_requires_name(self, client):
        resp = await client.post("/api/guilds", json={"name": "  "})
        assert resp.status_code == 400

    async def test_join_is_pending_and_notifies_owner(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id="owner-1"))
        mock_session.returns_one(guild).returns_none().returns_scalar(3)

        resp = await client.post(f"/api/guilds/{guild.id}/join")

        assert resp.status_code == 200
        assert resp.json()["membership"]["status"] == "PENDING"
        notes = mock_session.added(Notification)
        assert len(notes) == 1
        assert notes[0].userId == "owner-1"
        assert notes[0].fromUserId == current_user.id
        assert notes[0].type == "GUILD_JOIN_REQUEST"

    async def test_join_twice_returns_existing(self, client, mock_session, current_user):
        guild = _make_obj(make_guild())
        existing = _make_obj(make_membership(user_id=current_user.id, guild_id=guild.id))
        mock_session.returns_one(guild).returns_one(existing)

        resp = await client.post(f"/api/guilds/{guild.id}/join")

        assert resp.json()["membership"]["id"] == existing.id
        mock_session.mock.add.assert_not_called()
        mock_session.mock.commit.assert_not_awaited()

    async def test_join_race_returns_winning_row(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id="owner-1"))
        winner = _make_obj(make_membership(user_id=current_user.id, guild_id=guild.id))
        mock_session.returns_one(guild).returns_none().returns_scalar(1).returns_one(winner)
        mock_session.mock.commit.side_effect = IntegrityError(
            "INSERT INTO guild_memberships", {}, Exception("uq_guild_membership_user_guild")
        )

        resp = await client.post(f"/api/guilds/{guild.id}/join")

        assert resp.status_code == 200
        assert resp.json()["membership"]["id"] == winner.id
        mock_session.mock.rollback.assert_awaited_once()

    async def test_join_full_guild(self, client, mock_session):
        guild = _make_obj(make_guild(maxMembers=5))
        mock_session.returns_one(guild).returns_none().returns_scalar(5)

        resp = await client.post(f"/api/guilds/{guild.id}/join")

        assert resp.status_code == 409
        assert resp.json()["error"] == "GUILD_FULL"

    async def test_owner_cannot_leave(self, client, mock_session, current_user):
        mock_session.returns_one(_make_obj(make_guild(owner_id=current_user.id)))
        resp = await client.post("/api/guilds/g-1/leave")
        assert resp.status_code == 400
        assert resp.json()["error"] == "OWNER_CANNOT_LEAVE"

    async def test_leave(self, client, mock_session):
        mock_session.returns_one(_make_obj(make_guild())).returns_rowcount(1)
        resp = await client.post("/api/guilds/g-1/leave")
        assert resp.status_code == 200
        assert mock_session.mock.execute.await_count == 3
        mock_session.mock.commit.assert_awaited_once()

    async def test_leave_not_member(self, client, mock_session):
        mock_session.returns_one(_make_obj(make_guild())).returns_rowcount(0)
        resp = await client.post("/api/guilds/g-1/leave")
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Owner actions
# ---------------------------------------------------------------------------

class TestOwnerActions:

    @pytest.mark.parametrize("method,suffix", [
        ("GET", "/pending"),
        ("POST", "/memberships/m-1/approve"),
        ("POST", "/memberships/m-1/reject"),
        ("PATCH", ""),
        ("POST", "/disband"),
    ])
    async def test_non_owner_forbidden(self, client, mock_session, method, suffix):
        mock_session.returns_one(_make_obj(make_guild(owner_id="someone-else")))
        resp = await client.request(method, f"/api/guilds/g-1{suffix}", json={})
        assert resp.status_code == 403
        assert resp.json()["error"] == "NOT_OWNER"

    async def test_pending_list(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id=current_user.id))
        applicant = _make_obj(make_user(name="Applicant"))
        mock_session.returns_one(guild).returns_rows([
            (_make_obj(make_membership(user_id=applicant.id)), applicant),
        ])

        resp = await client.get(f"/api/guilds/{guild.id}/pending")

        pending = resp.json()["pending"]
        assert pending[0]["userName"] == "Applicant"

    async def test_approve_notifies_applicant(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id=current_user.id))
        membership = _make_obj(make_membership(user_id="applicant-1", guild_id=guild.id))
        mock_session.returns_one(guild).returns_one(membership).returns_scalar(2)

        resp = await client.post(f"/api/guilds/{guild.id}/memberships/{membership.id}/approve")

        assert resp.status_code == 200
        assert membership.status == "APPROVED"
        note = mock_session.added(Notification)[0]
        assert note.userId == "applicant-1"
        assert note.type == "GUILD_JOIN_APPROVED"

    async def test_approve_when_full(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id=current_user.id, maxMembers=2))
        membership = _make_obj(make_membership(guild_id=guild.id))
        mock_session.returns_one(guild).returns_one(membership).returns_scalar(2)

        resp = await client.post(f"/api/guilds/{guild.id}/memberships/{membership.id}/approve")

        assert resp.status_code == 409
        assert membership.status == "PENDING"

    async def test_approve_missing_membership(self, client, mock_session, current_user):
        mock_session.returns_one(_make_obj(make_guild(owner_id=current_user.id))).returns_none()
        resp = await client.post("/api/guilds/g-1/memberships/nope/approve")
        assert resp.status_code == 404

    async def test_reject_deletes(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id=current_user.id))
        membership = _make_obj(make_membership(user_id="applicant-1", guild_id=guild.id))
        mock_session.returns_one(guild).returns_one(membership)

        resp = await client.post(f"/api/guilds/{guild.id}/memberships/{membership.id}/reject")

        assert resp.status_code == 200
        assert mock_session.mock.execute.await_count == 3
        mock_session.mock.commit.assert_awaited_once()

    async def test_update_only_sent_fields(self, client, mock_session, current_user):
        guild = _make_obj(make_guild(owner_id=current_user.id, rules="Be kind"))
        mock_session.returns_one(guild)

        resp = await client.patch(f"/api/guilds/{guild.id}", json={"description": "New"})

        assert resp.status_code == 200
        assert guild.description == "New"
        assert guild.rules == "Be kind"

    async def test_disband(self, client, mock_session, current_user):
        mock_session.returns_one(_make_obj(make_guild(owner_id=current_user.id)))
        resp = await client.post("/api/guilds/g-1/disband")
        assert resp.status_code == 200
        assert mock_session.mock.execute.await_count == 6


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class TestNotifications:

    async def test_list(self, client, mock_session, current_user):
        note = _make_obj(make_notification(user_id=current_user.id))
        mock_session.returns_many([note])

        resp = await client.get("/api/guilds/notifications")

        notes = resp.json()["notifications"]
        assert notes[0]["id"] == note.id
        assert notes[0]["isRead"] is False

    async def test_unread_count(self, client, mock_session):
        mock_session.returns_scalar(7)
        resp = await client.get("/api/guilds/notifications/unread-count")
        assert resp.json() == {"ok": True, "count": 7}

    async def test_mark_read(self, client, mock_session):
        mock_session.returns_rowcount(1)
        resp = await client.patch("/api/guilds/notifications/n-1/read")
        assert resp.status_code == 200

    async def test_mark_read_missing(self, client, mock_session):
        mock_session.returns_rowcount(0)
        resp = await client.patch("/api/guilds/notifications/n-1/read")
        assert resp.status_code == 404

    async def test_mark_all_read(self, client, mock_session):
        mock_session.returns_rowcount(3)
        resp = await client.patch("/api/guilds/notifications/read-all")
        assert resp.json() == {"ok": True, "updated": 3}
