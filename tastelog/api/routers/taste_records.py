"""
Taste records -- the user's categorized notes about places and experiences.

Endpoints:
  POST   /api/taste-records         -- create (title and category required) (201)
  GET    /api/taste-records         -- caller's records, newest first
  GET    /api/taste-records/{id}    -- one of the caller's records
  DELETE /api/taste-records/{id}    -- delete one of the caller's records

Records belonging to someone else are reported as not found.
Tags are stored JSON-encoded in tagsJson.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import TasteRecord, User
from tastelog.api.db.session import get_db
from tastelog.api.errors import bad_request, not_found
from tastelog.api.routers._auth_deps import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/taste-records", tags=["taste-records"])


# ---------------------------------------------------------------------------
# Request models / serialization
# ---------------------------------------------------------------------------


class TasteRecordCreate(BaseModel):
    title: str = ""
    category: str = ""
    caption: Optional[str] = None
    content: Optional[str] = None
    tags: list[str] = []
    thumb: Optional[str] = None


def decode_tags(raw: str | None) -> list[str]:
    """tagsJson -> list; malformed JSON yields an empty list."""
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except ValueError:
        logger.warning("tags_json_malformed value=%r", raw[:100])
        return []
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags]


def encode_tags(tags: list[str]) -> str | None:
    cleaned = [t.strip() for t in tags if t and t.strip()]
    return json.dumps(cleaned, ensure_ascii=False) if cleaned else None


def serialize_record(record: TasteRecord) -> dict:
    return {
        "id": record.id,
        "title": record.title,
        "desc": record.desc or "",
        "content": record.content or "",
        "category": record.category,
        "tags": decode_tags(record.tagsJson),
        "thumb": record.thumb,
        "createdAt": record.createdAt.isoformat() if record.createdAt else None,
    }


def _owned(record_id: str, user_id: str):
    return and_(TasteRecord.id == record_id, TasteRecord.userId == user_id)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_record(
    body: TasteRecordCreate,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    title = body.title.strip()
    category = body.category.strip()
    if not title or not category:
        raise bad_request("title and category are required.")

    record = TasteRecord(
        id=str(uuid.uuid4()),
        userId=user.id,
        title=title,
        desc=body.caption,
        content=body.content,
        category=category,
        tagsJson=encode_tags(body.tags),
        thumb=body.thumb,
        createdAt=datetime.now(timezone.utc),
    )
    session.add(record)
    await session.commit()

    logger.info("taste_record_created user_id=%s record_id=%s category=%s", user.id, record.id, category)
    return {"ok": True, "record": serialize_record(record)}


@router.get("")
async def list_records(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        select(TasteRecord)
        .where(TasteRecord.userId == user.id)
        .order_by(TasteRecord.createdAt.desc())
    )
    result = await session.execute(stmt)
    return {"ok": True, "records": [serialize_record(r) for r in result.scalars().all()]}


@router.get("/{record_id}")
async def get_record(
    record_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    result = await session.execute(select(TasteRecord).where(_owned(record_id, user.id)))
    record = result.scalars().first()
    if record is None:
        raise not_found("Taste record not found.")
    return {"ok": True, "record": serialize_record(record)}


@router.delete("/{record_id}")
async def delete_record(
    record_id: str,
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    result = await session.execute(delete(TasteRecord).where(_owned(record_id, user.id)))
    if result.rowcount == 0:
        raise not_found("Taste record not found.")
    await session.commit()

    logger.info("taste_record_deleted user_id=%s record_id=%s", user.id, record_id)
    return {"ok": True}
