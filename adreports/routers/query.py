from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from ..ad.models import CredentialContext
from ..ad.service import ADService
from ..deps import get_ad_service, get_credential_context
from .schemas import CustomReportIn, QueryIn


router = APIRouter(prefix="/api", tags=["query"])


@router.post("/query")
async def run_query(
    body: QueryIn,
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    result = await service.execute_query(body.to_query(), ctx)
    return result.to_dict()


@router.post("/reports/custom")
async def run_custom_report(
    body: CustomReportIn,
    service: ADService = Depends(get_ad_service),
    ctx: Optional[CredentialContext] = Depends(get_credential_context),
):
    result = await service.execute_custom_query(body.query.to_model(), body.parameters, ctx)
    return result.to_dict()
