from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..ad.service import ADService
from ..deps import get_ad_service
from .schemas import AuthIn


router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health/ad")
async def ad_health(service: ADService = Depends(get_ad_service)):
    ok = await service.test_connection()
    return {"connected": ok, "status": service.connection_status}


@router.post("/auth/ad")
async def ad_auth(body: AuthIn, service: ADService = Depends(get_ad_service)):
    return {"authenticated": await service.authenticate_user(body.username, body.password)}


@router.delete("/cache")
async def cache_invalidate(
    pattern: str = Query(default="*", max_length=512),
    service: ADService = Depends(get_ad_service),
):
    return {"deleted": await service.invalidate_cache(pattern)}


@router.get("/metrics")
async def metrics(service: ADService = Depends(get_ad_service)):
    return service.get_metrics()
