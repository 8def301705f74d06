from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..ad.models import CredentialContext
from ..ad.service import ADService
from ..deps import get_ad_service, get_credential_context


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _payload(items: list[dict]) -> dict:
    return {"data": items, "count": len(items)}


@router.get("/inactive-users")
async def inactive_users(
    days: int = Query(default=90, ge=1, le=3650),
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    return _payload(await service.get_inactive_users(days, ctx))


@router.get("/disabled-users")
async def disabled_users(
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    return _payload(await service.get_disabled_users(ctx))


@router.get("/locked-users")
async def locked_users(
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    return _payload(await service.get_locked_users(ctx))


@router.get("/password-expiry")
async def password_expiry(
    days: int = Query(default=14, ge=1, le=365),
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    return _payload(await service.get_users_with_expiring_passwords(days, ctx))


@router.get("/never-expiring-passwords")
async def never_expiring_passwords(
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    return _payload(await service.get_users_with_never_expiring_passwords(ctx))
