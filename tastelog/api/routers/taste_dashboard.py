"""
Taste dashboard -- how the caller's tagged stays split across categories.

Endpoints:
  GET    /api/taste/dashboard

Only stays whose mappedCategory is one of the tracked categories count.
percentage is ratio * 100 rounded to one decimal.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tastelog.api.db.models import Stay, User
from tastelog.api.db.session import get_db
from tastelog.api.places.kakao import TRACKED_CATEGORIES
from tastelog.api.routers._auth_deps import require_user

router = APIRouter(prefix="/api/taste", tags=["taste-dashboard"])


def build_dashboard(counts: dict[str, int]) -> dict:
    """Shape per-category counts into the dashboard payload."""
    total = sum(counts.get(c, 0) for c in TRACKED_CATEGORIES)
    categories = []
    for key in TRACKED_CATEGORIES:
        count = counts.get(key, 0)
        ratio = count / total if total else 0.0
        categories.append({
            "key": key,
            "label": key,
            "count": count,
            "ratio": ratio,
            "percentage": round(ratio * 100, 1),
        })
    return {"ok": True, "totalStays": total, "categories": categories}


@router.get("/dashboard")
async def get_dashboard(
    user: User = Depends(require_user),
    session: AsyncSession = Depends(get_db),
) -> dict:
    stmt = (
        select(Stay.mappedCategory, func.count(Stay.id))
        .where(
            and_(
                Stay.userId == user.id,
                Stay.mappedCategory.in_(TRACKED_CATEGORIES),
            )
        )
        .group_by(Stay.mappedCategory)
    )
    result = await session.execute(stmt)
    counts = {category: int(count) for category, count in result.all()}
    return build_dashboard(counts)
