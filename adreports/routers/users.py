from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..ad.models import CredentialContext
from ..ad.service import ADService
from ..deps import get_ad_service, get_credential_context


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/search")
async def users_search(
    q: str = Query(default="", max_length=256),
    by: str = Query(default="displayName"),
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    q = (q or "").strip()
    if len(q) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Введите минимум 2 символа для поиска.")
    items = await service.search_users(q, by, ctx)
    return {"data": items, "count": len(items)}


@router.get("/{username}")
async def user_details(
    username: str,
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    user = await service.get_user(username, ctx)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
