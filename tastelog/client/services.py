"""
Request functions for the Tastelog API, one per endpoint.

Each takes an ApiClient, unwraps the {"ok": true, ...} envelope and returns
the interesting part. Failures surface as ApiError.
"""

from __future__ import annotations

from typing import Any, Optional

from tastelog.client.http import ApiClient
from tastelog.stays import StayReport


# ---------------------------------------------------------------------------
# Stays
# ---------------------------------------------------------------------------


async def create_stay(client: ApiClient, report: StayReport) -> Optional[dict[str, Any]]:
    body = await client.post_ok("/stays", json=report.to_payload())
    return body.get("stay")


# ---------------------------------------------------------------------------
# Taste records / dashboard
# ---------------------------------------------------------------------------


async def list_taste_records(client: ApiClient) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", "/taste-records")
    return body["records"]


async def get_taste_record(client: ApiClient, record_id: str) -> dict[str, Any]:
    body = await client.request_ok("GET", f"/taste-records/{record_id}")
    return body["record"]


async def create_taste_record(
    client: ApiClient,
    *,
    title: str,
    category: str,
    caption: Optional[str] = None,
    content: Optional[str] = None,
    tags: Optional[list[str]] = None,
    thumb: Optional[str] = None,
) -> dict[str, Any]:
    payload = {
        "title": title,
        "category": category,
        "caption": caption,
        "content": content,
        "tags": tags or [],
        "thumb": thumb,
    }
    body = await client.post_ok("/taste-records", json=payload)
    return body["record"]


async def delete_taste_record(client: ApiClient, record_id: str) -> None:
    await client.request_ok("DELETE", f"/taste-records/{record_id}")


async def get_taste_dashboard(client: ApiClient) -> dict[str, Any]:
    """{totalStays, categories: [{key, label, count, ratio, percentage}]}"""
    body = await client.request_ok("GET", "/taste/dashboard")
    return {"totalStays": body["totalStays"], "categories": body["categories"]}


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------


async def list_guilds(client: ApiClient) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", "/guilds")
    return body["guilds"]


async def get_guild(client: ApiClient, guild_id: str) -> dict[str, Any]:
    body = await client.request_ok("GET", f"/guilds/{guild_id}")
    return body["guild"]


async def get_my_guild_status(client: ApiClient) -> dict[str, Any]:
    """{status: NONE | PENDING | APPROVED, guild}"""
    body = await client.request_ok("GET", "/guilds/me")
    return {"status": body["status"], "guild": body.get("guild")}


async def create_guild(
    client: ApiClient,
    *,
    name: str,
    description: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[list[str]] = None,
    rules: Optional[str] = None,
    max_members: Optional[int] = None,
    emblem_url: Optional[str] = None,
) -> dict[str, Any]:
    payload = {
        "name": name,
        "description": description,
        "category": category,
        "tags": tags or [],
        "rules": rules,
        "maxMembers": max_members,
        "emblemUrl": emblem_url,
    }
    body = await client.post_ok("/guilds", json=payload)
    return body["guild"]


async def join_guild(client: ApiClient, guild_id: str) -> dict[str, Any]:
    body = await client.post_ok(f"/guilds/{guild_id}/join")
    return body["membership"]


async def leave_guild(client: ApiClient, guild_id: str) -> None:
    await client.post_ok(f"/guilds/{guild_id}/leave")


async def update_guild(
    client: ApiClient,
    guild_id: str,
    *,
    emblem_url: Optional[str] = None,
    description: Optional[str] = None,
    rules: Optional[str] = None,
) -> dict[str, Any]:
    """Only the fields passed (non-None) are sent and changed."""
    fields = {"emblemUrl": emblem_url, "description": description, "rules": rules}
    payload = {k: v for k, v in fields.items() if v is not None}
    body = await client.request_ok("PATCH", f"/guilds/{guild_id}", json=payload)
    return body["guild"]


async def disband_guild(client: ApiClient, guild_id: str) -> None:
    await client.post_ok(f"/guilds/{guild_id}/disband")


async def list_guild_members(client: ApiClient, guild_id: str) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", f"/guilds/{guild_id}/members")
    return body["members"]


async def get_guild_ranking(client: ApiClient, guild_id: str) -> dict[str, Any]:
    """{myRank, top3}"""
    body = await client.request_ok("GET", f"/guilds/{guild_id}/ranking")
    return {"myRank": body.get("myRank"), "top3": body["top3"]}


async def list_pending_memberships(client: ApiClient, guild_id: str) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", f"/guilds/{guild_id}/pending")
    return body["pending"]


async def approve_membership(client: ApiClient, guild_id: str, membership_id: str) -> dict[str, Any]:
    body = await client.post_ok(f"/guilds/{guild_id}/memberships/{membership_id}/approve")
    return body["membership"]


async def reject_membership(client: ApiClient, guild_id: str, membership_id: str) -> None:
    await client.post_ok(f"/guilds/{guild_id}/memberships/{membership_id}/reject")


# ---------------------------------------------------------------------------
# Guild missions
# ---------------------------------------------------------------------------


async def create_guild_mission(
    client: ApiClient,
    guild_id: str,
    *,
    title: str,
    limit_count: int,
    content: Optional[str] = None,
    difficulty: Optional[str] = None,
    main_image: Optional[str] = None,
    extra_images: Optional[list[str]] = None,
) -> dict[str, Any]:
    payload = {
        "title": title,
        "limitCount": limit_count,
        "content": content,
        "difficulty": difficulty,
        "mainImage": main_image,
        "extraImages": extra_images or [],
    }
    body = await client.post_ok(f"/guilds/{guild_id}/missions", json=payload)
    return body["mission"]


async def list_guild_missions(client: ApiClient, guild_id: str) -> list[dict[str, Any]]:
    """Missions still taking records."""
    body = await client.request_ok("GET", f"/guilds/{guild_id}/missions")
    return body["missions"]


async def list_completed_guild_missions(client: ApiClient, guild_id: str) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", f"/guilds/{guild_id}/missions/completed")
    return body["missions"]


async def delete_guild_mission(client: ApiClient, guild_id: str, mission_id: str) -> None:
    await client.request_ok("DELETE", f"/guilds/{guild_id}/missions/{mission_id}")


async def list_mission_records(client: ApiClient, guild_id: str, mission_id: str) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", f"/guilds/{guild_id}/missions/{mission_id}/records")
    return body["records"]


async def create_mission_record(
    client: ApiClient,
    guild_id: str,
    mission_id: str,
    *,
    title: str,
    desc: Optional[str] = None,
    content: Optional[str] = None,
    category: Optional[str] = None,
    rating: Optional[int] = None,
    main_image: Optional[str] = None,
) -> dict[str, Any]:
    """{record, pointsAwarded}"""
    payload = {
        "title": title,
        "desc": desc,
        "content": content,
        "category": category,
        "rating": rating,
        "mainImage": main_image,
    }
    body = await client.post_ok(f"/guilds/{guild_id}/missions/{mission_id}/records", json=payload)
    return {"record": body["record"], "pointsAwarded": int(body.get("pointsAwarded", 0))}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def list_notifications(client: ApiClient, limit: int = 50) -> list[dict[str, Any]]:
    body = await client.request_ok("GET", "/guilds/notifications", params={"limit": limit})
    return body["notifications"]


async def get_unread_count(client: ApiClient) -> int:
    body = await client.request_ok("GET", "/guilds/notifications/unread-count")
    return int(body["count"])


async def mark_notification_read(client: ApiClient, notification_id: str) -> None:
    await client.request_ok("PATCH", f"/guilds/notifications/{notification_id}/read")


async def mark_all_notifications_read(client: ApiClient) -> int:
    body = await client.request_ok("PATCH", "/guilds/notifications/read-all")
    return int(body.get("updated", 0))
