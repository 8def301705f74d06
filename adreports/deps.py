from __future__ import annotations

from typing import Optional

from fastapi import Header, Query, Request

from .ad.models import CredentialContext
from .ad.service import ADService


def get_ad_service(request: Request) -> ADService:
    return request.app.state.ad_service


def get_credential_context(
    x_user_id: Optional[int] = Header(default=None),
    system: bool = Query(default=False),
) -> Optional[CredentialContext]:
    """Credential context of the caller.

    - `?system=true` forces the service account.
    - `X-User-Id` selects the user's stored credentials (system as fallback).
    - Neither: the service default (system credentials).
    """
    if not system and x_user_id is None:
        return None
    return CredentialContext(user_id=x_user_id, use_system_credentials=system)
