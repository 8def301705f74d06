"""Pool of bound LDAP connections.

Connections are keyed by (endpoint, bind DN, credential source). Acquisition
for a key is single-flight: a per-key lock guards the "reuse or bind" step,
so concurrent callers never bind two sessions for the same slot.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional, Protocol

from .errors import DataSourceError, DirectoryConnectionError
from .models import ConnectionOptions, CredentialContext, Credentials, PoolKey
from .session import DirectorySession, open_session
from .utils import mask_dn


logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    async def get_credentials(self, service: str, context: Optional[CredentialContext] = None) -> Credentials:
        ...


SessionFactory = Callable[[ConnectionOptions], DirectorySession]


class PooledConnection:
    """A pooled session. Only the pool closes it."""

    def __init__(self, key: PoolKey, session: DirectorySession) -> None:
        self.key = key
        self.session = session
        self.state = "bound"
        self.created_at = time.monotonic()
        self.last_used = self.created_at
        self.uses = 0
        # one ldap3 connection, one operation at a time
        self._lock = asyncio.Lock()

    async def search(self, base_dn: str, search_filter: str, **kwargs: Any) -> list[dict[str, Any]]:
        async with self._lock:
            self.uses += 1
            self.last_used = time.monotonic()
            try:
                return await asyncio.to_thread(self.session.search, base_dn, search_filter, **kwargs)
            finally:
                self.state = "idle"

    async def validate(self, time_limit: int = 5) -> bool:
        async with self._lock:
            ok = await asyncio.to_thread(self.session.is_alive, time_limit)
        self.state = "validated" if ok else "invalid"
        return ok

    async def close(self) -> None:
        self.state = "closed"
        await asyncio.to_thread(self.session.unbind)

    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_used


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ConnectionPool:
    def __init__(
        self,
        url: str,
        credentials: CredentialProvider,
        *,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        use_tls: bool = False,
        tls_validate: bool = False,
        session_factory: SessionFactory = open_session,
        cleanup_interval_s: float = 300.0,
        max_idle_s: float = 0.0,
        check_time_limit: int = 5,
        service: str = "ad",
    ) -> None:
        self.url = url
        self.credentials = credentials
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.use_tls = use_tls
        self.tls_validate = tls_validate
        self.session_factory = session_factory
        self.cleanup_interval_s = cleanup_interval_s
        self.max_idle_s = max_idle_s
        self.check_time_limit = check_time_limit
        self.service = service

        self._pool: dict[PoolKey, PooledConnection] = {}
        self._locks: dict[PoolKey, _KeyLock] = {}
        self._cleanup_task: asyncio.Task | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self._pool)

    def get(self, key: PoolKey) -> PooledConnection | None:
        return self._pool.get(key)

    async def options_for(self, context: Optional[CredentialContext] = None) -> ConnectionOptions:
        creds = await self.credentials.get_credentials(self.service, context)
        if not creds or not creds.username or not creds.password:
            raise DataSourceError("No credentials available for AD connection", "NO_CREDENTIALS")

        logger.debug(
            "LDAP connection parameters: url=%s bind=%s system=%s",
            self.url, mask_dn(creds.bind_principal), bool(context and context.use_system_credentials),
        )
        return self.options_for_bind(creds.bind_principal, creds.password)

    def options_for_bind(self, bind_dn: str, password: str) -> ConnectionOptions:
        return ConnectionOptions(
            url=self.url,
            bind_dn=bind_dn,
            bind_password=password,
            timeout=self.timeout,
            connect_timeout=self.connect_timeout,
            use_tls=self.use_tls,
            tls_validate=self.tls_validate,
        )

    @staticmethod
    def key_for(options: ConnectionOptions, context: Optional[CredentialContext] = None) -> PoolKey:
        # The credential source comes from the acquiring context: two identities
        # sharing a bind DN must not share a session.
        ctx = context or CredentialContext()
        return PoolKey(url=options.url or "default", bind_dn=options.bind_dn or "anonymous", credential_source=ctx.credential_source)

    async def acquire(self, context: Optional[CredentialContext] = None) -> PooledConnection:
        if self._closed:
            raise DataSourceError("Connection pool is closed")

        context = context or CredentialContext()
        options = await self.options_for(context)
        key = self.key_for(options, context)
        async with self._key_lock(key):
            pooled = self._pool.get(key)
            if pooled is not None:
                if await pooled.validate(self.check_time_limit):
                    return pooled
                logger.info("Removing stale connection from pool: %s", key)
                await self._evict(key, pooled)

            try:
                session = await asyncio.to_thread(self.session_factory, options)
            except DirectoryConnectionError as e:
                logger.error("LDAP bind failed for %s: %s", key, e)
                raise
            except Exception as e:
                logger.error("Failed to create connection for %s: %s", key, e)
                raise DirectoryConnectionError("Failed to connect to AD", cause=e) from e

            pooled = PooledConnection(key, session)
            self._pool[key] = pooled
            return pooled

    @asynccontextmanager
    async def _key_lock(self, key: PoolKey) -> AsyncIterator[None]:
        """Per-key lock. Dropped once nobody holds or waits for it and the slot is empty."""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and key not in self._pool and self._locks.get(key) is entry:
                del self._locks[key]

    async def _evict(self, key: PoolKey, pooled: PooledConnection) -> None:
        if self._pool.get(key) is pooled:
            del self._pool[key]
        try:
            await pooled.close()
        except Exception as e:
            logger.warning("Error closing connection %s: %s", key, e)

    async def cleanup_stale(self) -> int:
        """Validate pooled connections, evicting idle-expired and broken ones."""
        removed = 0
        for key, pooled in list(self._pool.items()):
            async with self._key_lock(key):
                if self._pool.get(key) is not pooled:
                    continue
                if self.max_idle_s and pooled.idle_seconds() > self.max_idle_s:
                    logger.info("Closing idle connection: %s", key)
                elif await pooled.validate(self.check_time_limit):
                    continue
                else:
                    logger.info("Removing stale connection from pool: %s", key)
                await self._evict(key, pooled)
                removed += 1
        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_s)
            try:
                await self.cleanup_stale()
            except Exception:
                logger.exception("Failed to cleanup stale connections")

    def start(self) -> None:
        """Arm the periodic cleanup. Interval 0 disables it."""
        if self.cleanup_interval_s <= 0 or self._cleanup_task is not None:
            return
        self._closed = False
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop(), name="ad-pool-cleanup")

    async def close(self) -> None:
        self._closed = True
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for key, pooled in list(self._pool.items()):
            await self._evict(key, pooled)
        self._locks.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._pool),
            "locks": len(self._locks),
            "cleanup_armed": self._cleanup_task is not None,
            "connections": [
                {
                    "key": str(key),
                    "state": p.state,
                    "uses": p.uses,
                    "age_s": round(time.monotonic() - p.created_at, 1),
                    "idle_s": round(p.idle_seconds(), 1),
                }
                for key, p in self._pool.items()
            ],
        }
