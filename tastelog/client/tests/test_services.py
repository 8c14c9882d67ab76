"""
Request function tests: paths, payloads, envelope unwrapping.
"""

import json

import pytest

from tastelog.client import services
from tastelog.client.http import ApiError
from tastelog.stays import StayReport

pytestmark = pytest.mark.asyncio


def _sent(fake_api, index=0):
    return json.loads(fake_api.requests[index].content)


class TestStaysAndRecords:

    async def test_create_stay(self, api_client, fake_api):
        fake_api.on("POST", "/api/stays", status=201, json={"ok": True, "stay": {"id": "s-1"}})

        stay = await services.create_stay(api_client, StayReport(37.5, 127.0, 1_000, 31_000))

        assert stay == {"id": "s-1"}
        assert _sent(fake_api) == {"lat": 37.5, "lng": 127.0, "startTime": 1_000, "endTime": 31_000}

    async def test_create_stay_reply_without_stay(self, api_client, fake_api):
        fake_api.on("POST", "/api/stays", status=201, json={"ok": True})

        assert await services.create_stay(api_client, StayReport(37.5, 127.0, 1_000, 31_000)) is None

    async def test_create_taste_record(self, api_client, fake_api):
        fake_api.on("POST", "/api/taste-records", status=201, json={"ok": True, "record": {"id": "r-1"}})

        record = await services.create_taste_record(api_client, title="Ramen", category="식당", tags=["night"])

        assert record["id"] == "r-1"
        sent = _sent(fake_api)
        assert sent["title"] == "Ramen"
        assert sent["tags"] == ["night"]

    async def test_list_and_get_records(self, api_client, fake_api):
        fake_api.on("GET", "/api/taste-records", json={"ok": True, "records": [{"id": "r-1"}]})
        fake_api.on("GET", "/api/taste-records/r-1", json={"ok": True, "record": {"id": "r-1"}})

        assert await services.list_taste_records(api_client) == [{"id": "r-1"}]
        assert (await services.get_taste_record(api_client, "r-1"))["id"] == "r-1"

    async def test_delete_missing_record_raises(self, api_client, fake_api):
        fake_api.on("DELETE", "/api/taste-records/r-9", status=404,
                    json={"ok": False, "error": "NOT_FOUND", "message": "Taste record not found."})

        with pytest.raises(ApiError) as exc_info:
            await services.delete_taste_record(api_client, "r-9")
        assert exc_info.value.status == 404

    async def test_dashboard(self, api_client, fake_api):
        fake_api.on("GET", "/api/taste/dashboard",
                    json={"ok": True, "totalStays": 2, "categories": [{"key": "카페", "count": 2}]})

        data = await services.get_taste_dashboard(api_client)

        assert data == {"totalStays": 2, "categories": [{"key": "카페", "count": 2}]}


class TestGuilds:

    async def test_create_guild_payload(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds", status=201, json={"ok": True, "guild": {"id": "g-1"}})

        await services.create_guild(api_client, name="Owls", max_members=10, emblem_url="e.png")

        sent = _sent(fake_api)
        assert sent["maxMembers"] == 10
        assert sent["emblemUrl"] == "e.png"

    async def test_update_sends_only_given_fields(self, api_client, fake_api):
        fake_api.on("PATCH", "/api/guilds/g-1", json={"ok": True, "guild": {"id": "g-1"}})

        await services.update_guild(api_client, "g-1", rules="Be kind")

        assert _sent(fake_api) == {"rules": "Be kind"}

    async def test_my_status(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/me", json={"ok": True, "status": "NONE", "guild": None})
        assert await services.get_my_guild_status(api_client) == {"status": "NONE", "guild": None}

    async def test_join_full_guild(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds/g-1/join", status=409, json={"ok": False, "error": "GUILD_FULL"})
        with pytest.raises(ApiError) as exc_info:
            await services.join_guild(api_client, "g-1")
        assert exc_info.value.code == "GUILD_FULL"

    async def test_membership_actions_paths(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds/g-1/memberships/m-1/approve",
                    json={"ok": True, "membership": {"status": "APPROVED"}})
        fake_api.on("POST", "/api/guilds/g-1/memberships/m-2/reject", json={"ok": True})
        fake_api.on("GET", "/api/guilds/g-1/pending", json={"ok": True, "pending": []})

        assert (await services.approve_membership(api_client, "g-1", "m-1"))["status"] == "APPROVED"
        await services.reject_membership(api_client, "g-1", "m-2")
        assert await services.list_pending_memberships(api_client, "g-1") == []

    async def test_ranking(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/g-1/ranking", json={"ok": True, "myRank": None, "top3": []})
        assert await services.get_guild_ranking(api_client, "g-1") == {"myRank": None, "top3": []}


class TestGuildMissions:

    async def test_create_mission_payload(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds/g-1/missions", status=201,
                    json={"ok": True, "mission": {"id": "ms-1", "participantCount": 0}})

        mission = await services.create_guild_mission(
            api_client, "g-1", title="Bakery run", limit_count=3, difficulty="보통"
        )

        assert mission["id"] == "ms-1"
        sent = _sent(fake_api)
        assert sent["limitCount"] == 3
        assert sent["difficulty"] == "보통"
        assert sent["extraImages"] == []

    async def test_open_and_completed_lists(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/g-1/missions", json={"ok": True, "missions": [{"id": "ms-1"}]})
        fake_api.on("GET", "/api/guilds/g-1/missions/completed", json={"ok": True, "missions": []})

        assert await services.list_guild_missions(api_client, "g-1") == [{"id": "ms-1"}]
        assert await services.list_completed_guild_missions(api_client, "g-1") == []

    async def test_delete_mission(self, api_client, fake_api):
        fake_api.on("DELETE", "/api/guilds/g-1/missions/ms-1", json={"ok": True})
        await services.delete_guild_mission(api_client, "g-1", "ms-1")
        assert fake_api.requests[0].method == "DELETE"

    async def test_record_returns_points(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds/g-1/missions/ms-1/records", status=201,
                    json={"ok": True, "record": {"id": "mr-1"}, "pointsAwarded": 50})

        result = await services.create_mission_record(api_client, "g-1", "ms-1", title="Croissant", rating=5)

        assert result == {"record": {"id": "mr-1"}, "pointsAwarded": 50}
        assert _sent(fake_api)["rating"] == 5

    async def test_full_mission_raises(self, api_client, fake_api):
        fake_api.on("POST", "/api/guilds/g-1/missions/ms-1/records", status=409,
                    json={"ok": False, "error": "MISSION_FULL", "message": "This mission is already complete."})

        with pytest.raises(ApiError) as exc_info:
            await services.create_mission_record(api_client, "g-1", "ms-1", title="Late")
        assert exc_info.value.code == "MISSION_FULL"

    async def test_list_records(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/g-1/missions/ms-1/records", json={"ok": True, "records": [{"id": "mr-1"}]})
        assert await services.list_mission_records(api_client, "g-1", "ms-1") == [{"id": "mr-1"}]


class TestNotifications:

    async def test_list_passes_limit(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/notifications", json={"ok": True, "notifications": []})

        await services.list_notifications(api_client, limit=5)

        assert fake_api.requests[0].url.params["limit"] == "5"

    async def test_counts(self, api_client, fake_api):
        fake_api.on("GET", "/api/guilds/notifications/unread-count", json={"ok": True, "count": 4})
        fake_api.on("PATCH", "/api/guilds/notifications/read-all", json={"ok": True, "updated": 4})

        assert await services.get_unread_count(api_client) == 4
        assert await services.mark_all_notifications_read(api_client) == 4

    async def test_mark_read(self, api_client, fake_api):
        fake_api.on("PATCH", "/api/guilds/notifications/n-1/read", json={"ok": True})
        await services.mark_notification_read(api_client, "n-1")
        assert fake_api.requests[0].method == "PATCH"
