"""Credential resolution for directory services.

Order: explicit credentials in the context, then system credentials from the
environment (when requested or when no user is known), then the user's stored
credentials, falling back to system credentials if the user has none.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .ad.errors import DataSourceError
from .ad.models import CredentialContext, Credentials
from .ad.pool import CredentialProvider  # noqa: F401
from .crypto import decrypt_str
from .env_settings import EnvSettings
from .repo import db_session, get_active_credential


logger = logging.getLogger(__name__)

SERVICE_TYPES = ("ad", "azure", "o365")


def _missing(creds: Credentials, service: str) -> bool:
    if service == "ad":
        return not creds.username or not creds.password
    return not creds.tenant_id or not creds.client_id or not creds.client_secret


class CredentialContextManager:
    def __init__(
        self,
        env: EnvSettings,
        session_factory: Optional[sessionmaker] = None,
        *,
        cache_ttl_s: float = 300.0,
    ) -> None:
        self.env = env
        self.session_factory = session_factory
        self.cache_ttl_s = cache_ttl_s
        self._cache: dict[str, tuple[Credentials, float]] = {}

    def _cached(self, key: str) -> Optional[Credentials]:
        hit = self._cache.get(key)
        if hit is None:
            return None
        creds, ts = hit
        if time.monotonic() - ts >= self.cache_ttl_s:
            self._cache.pop(key, None)
            return None
        return creds

    def _remember(self, key: str, creds: Credentials) -> Credentials:
        self._cache[key] = (creds, time.monotonic())
        return creds

    async def get_credentials(self, service: str, context: Optional[CredentialContext] = None) -> Credentials:
        if service not in SERVICE_TYPES:
            raise DataSourceError(f"Unknown data source type: {service}", "NO_CREDENTIALS")

        if context is not None and context.credentials is not None:
            return context.credentials

        if context is None or context.use_system_credentials or context.user_id is None:
            return self.get_system_credentials(service)

        try:
            creds = await self.get_user_credentials(context.user_id, service)
        except SQLAlchemyError as e:
            logger.warning("Failed to get user credentials for %s, falling back to system credentials: %s", service, e)
            creds = None

        if creds is not None:
            return creds
        return self.get_system_credentials(service)

    def get_system_credentials(self, service: str) -> Credentials:
        key = f"system:{service}"
        cached = self._cached(key)
        if cached is not None:
            return cached

        env = self.env
        if service == "ad":
            creds = Credentials(username=env.ad_username, password=env.ad_password, domain=env.ad_domain or None)
        else:
            # O365 uses the Azure app registration
            creds = Credentials(
                username="",
                password="",
                tenant_id=env.azure_tenant_id,
                client_id=env.azure_client_id,
                client_secret=env.azure_client_secret,
            )

        if _missing(creds, service):
            if service == "ad":
                msg = "AD credentials are not configured. Set AD_USERNAME and AD_PASSWORD."
            else:
                msg = f"{service.upper()} credentials are not configured. Set AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET."
            raise DataSourceError(msg, "NO_CREDENTIALS")

        return self._remember(key, creds)

    async def get_user_credentials(self, user_id: int, service: str) -> Optional[Credentials]:
        key = f"user:{user_id}:{service}"
        cached = self._cached(key)
        if cached is not None:
            return cached
        if self.session_factory is None:
            return None

        creds = await asyncio.to_thread(self._load_user_credentials, user_id, service)
        if creds is None:
            return None
        if _missing(creds, service):
            logger.warning("Stored %s credentials of user %s are incomplete, ignoring them", service, user_id)
            return None
        return self._remember(key, creds)

    def _load_user_credentials(self, user_id: int, service: str) -> Optional[Credentials]:
        with db_session(self.session_factory) as db:
            row = get_active_credential(db, user_id, service)
            if row is None:
                return None
            secret = self.env.secret_key
            return Credentials(
                username=row.username,
                password=decrypt_str(row.password_enc, secret),
                domain=row.domain or self.env.ad_domain or None,
                tenant_id=row.tenant_id,
                client_id=row.client_id,
                client_secret=decrypt_str(row.client_secret_enc, secret),
            )

    def clear_cache(self, user_id: Optional[int] = None) -> None:
        if user_id is None:
            self._cache.clear()
            return
        prefix = f"user:{user_id}:"
        for k in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[k]
