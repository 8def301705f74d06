from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from .aliases import resolve_field_alias
from .errors import DirectoryError, QueryValidationError
from .filters import And, Equals, Or, build_complex_filter, substitute_parameters
from .models import (
    DIRECTIONS,
    SCOPES,
    CredentialContext,
    Credentials,
    CustomQuery,
    FilterCondition,
    Query,
    QueryResult,
)
from .pool import ConnectionPool
from .transform import convert_entry_to_user, post_process, project_custom_fields, raw_attribute_bag
from .utils import (
    LDAP_FILTERS,
    UAC_DONT_EXPIRE_PASSWORD,
    USER_ATTRIBUTES,
    USER_FILTER,
    days_to_filetime,
    looks_like_dn,
)
from ..cache import CACHE_PREFIX, QueryCache, build_cache_key


logger = logging.getLogger(__name__)

DEFAULT_BASE_DN = "DC=domain,DC=local"
DEFAULT_CACHE_TTL_S = 300
DEFAULT_SIZE_LIMIT = 1000
SEARCH_TIME_LIMIT_S = 30
PAGE_SIZE = 1000

# query types that may omit the filter
DEFAULT_FILTERS = {
    "user": USER_FILTER,
    "users": USER_FILTER,
    "all_users": USER_FILTER,
    "disabled_users": LDAP_FILTERS["DISABLED_USERS"],
    "locked_users": LDAP_FILTERS["LOCKED_USERS"],
    "computers": LDAP_FILTERS["COMPUTERS"],
    "groups": LDAP_FILTERS["GROUPS"],
}

SEARCH_FIELDS = {
    "username": "sAMAccountName",
    "displayName": "displayName",
    "email": "mail",
}


def _day_start() -> datetime:
    # report cutoffs are taken from the start of the UTC day
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def validate_query(query: Query) -> None:
    if not query.type:
        raise QueryValidationError("Query type is required")
    if not (query.filter or "").strip() and query.type not in DEFAULT_FILTERS:
        raise QueryValidationError(f"Query filter is required for type '{query.type}'")
    if query.scope not in SCOPES:
        raise QueryValidationError(f"Invalid search scope: {query.scope!r} (expected base, one or sub)")
    if query.size_limit is not None and query.size_limit < 0:
        raise QueryValidationError("size_limit must be non-negative")
    if query.limit is not None and query.limit < 0:
        raise QueryValidationError("limit must be non-negative")
    if query.order_by is not None:
        if not query.order_by.field:
            raise QueryValidationError("orderBy.field is required")
        if query.order_by.direction not in DIRECTIONS:
            raise QueryValidationError(f"Invalid sort direction: {query.order_by.direction!r}")


class ADService:
    """Active Directory query service for reports.

    Query pipeline: validate -> cache lookup -> pooled connection -> search ->
    records -> sort/limit -> cache write. Cache faults are logged and
    otherwise ignored; directory faults surface as DirectoryError subclasses.
    """

    service_name = "ad"

    def __init__(
        self,
        pool: ConnectionPool,
        cache: Optional[QueryCache] = None,
        *,
        base_dn: str = DEFAULT_BASE_DN,
        domain: str = "",
        cache_ttl_s: int = DEFAULT_CACHE_TTL_S,
        max_password_age_days: int = 90,
        default_context: Optional[CredentialContext] = None,
    ) -> None:
        self.pool = pool
        self.cache = cache
        self.base_dn = base_dn or DEFAULT_BASE_DN
        self.domain = domain
        self.cache_ttl_s = cache_ttl_s
        self.max_password_age_days = max_password_age_days
        self.default_context = default_context or CredentialContext(use_system_credentials=True)

        self.connection_status: dict[str, Any] = {"connected": False, "lastCheck": None, "error": None}
        self.counters = {"queries": 0, "cacheHits": 0, "cacheMisses": 0, "errors": 0}

    # ---------------------------
    # lifecycle
    # ---------------------------

    async def open(self) -> None:
        self.pool.start()

    async def close(self) -> None:
        await self.pool.close()
        close = getattr(self.cache, "close", None)
        if close is not None:
            await close()

    # ---------------------------
    # query pipeline
    # ---------------------------

    def resolve_base_dn(self, base_dn: Optional[str]) -> str:
        value = (base_dn or "").strip()
        if value and looks_like_dn(value):
            return value
        if value:
            logger.warning("Invalid baseDN provided (%r), falling back to default %r", value, self.base_dn)
        return self.base_dn

    async def _cache_get(self, key: str) -> Optional[QueryResult]:
        try:
            raw = await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache retrieval failed: %s", e)
            return None
        if raw is None:
            return None
        try:
            return QueryResult.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring corrupt cache entry %s: %s", key, e)
            return None

    async def _cache_set(self, key: str, result: QueryResult) -> None:
        try:
            payload = json.dumps(result.to_dict(), ensure_ascii=False, default=str)
            await self.cache.set(key, payload, self.cache_ttl_s)
        except Exception as e:
            logger.warning("Cache storage failed: %s", e)

    async def execute_query(self, query: Query, context: Optional[CredentialContext] = None) -> QueryResult:
        validate_query(query)

        started = time.perf_counter()
        ctx = context or self.default_context
        key = build_cache_key(query, ctx)
        use_cache = query.use_cache and self.cache is not None

        logger.debug("Executing query type=%s source=%s", query.type, ctx.credential_source)
        self.counters["queries"] += 1

        if use_cache:
            cached = await self._cache_get(key)
            if cached is not None:
                self.counters["cacheHits"] += 1
                cached.cached = True
                return cached
            self.counters["cacheMisses"] += 1

        try:
            conn = await self.pool.acquire(ctx)
            base_dn = self.resolve_base_dn(query.base_dn)
            search_filter = (query.filter or "").strip() or DEFAULT_FILTERS[query.type]

            attributes = list(query.attributes)
            if not attributes and query.type != "custom":
                attributes = list(USER_ATTRIBUTES)

            entries = await conn.search(
                base_dn,
                search_filter,
                scope=query.scope,
                attributes=attributes,
                size_limit=DEFAULT_SIZE_LIMIT if query.size_limit is None else query.size_limit,
                time_limit=SEARCH_TIME_LIMIT_S,
                paged=query.paged,
                page_size=PAGE_SIZE,
            )
        except DirectoryError:
            self.counters["errors"] += 1
            raise

        if query.type == "custom":
            records = [raw_attribute_bag(e) for e in entries]
        else:
            records = [convert_entry_to_user(e) for e in entries]

        data = post_process(records, query.order_by, query.limit)
        result = QueryResult(
            data=data,
            count=len(data),
            execution_time_ms=int((time.perf_counter() - started) * 1000),
            cached=False,
            metadata={"type": query.type, "baseDN": base_dn},
        )

        if use_cache:
            await self._cache_set(key, result)
        return result

    # ---------------------------
    # reports
    # ---------------------------

    async def get_inactive_users(self, days: int = 90, context: Optional[CredentialContext] = None) -> list[dict]:
        query = Query(
            type="inactive_users",
            filter=build_complex_filter(USER_FILTER, [
                FilterCondition("lastLogonTimestamp", "less_or_equal", days_to_filetime(days, _day_start())),
            ]),
            attributes=tuple(USER_ATTRIBUTES),
            parameters=(("days", int(days)),),
        )
        return (await self.execute_query(query, context)).data

    async def get_disabled_users(self, context: Optional[CredentialContext] = None) -> list[dict]:
        query = Query(type="disabled_users", filter=LDAP_FILTERS["DISABLED_USERS"], attributes=tuple(USER_ATTRIBUTES))
        return (await self.execute_query(query, context)).data

    async def get_locked_users(self, context: Optional[CredentialContext] = None) -> list[dict]:
        query = Query(type="locked_users", filter=LDAP_FILTERS["LOCKED_USERS"], attributes=tuple(USER_ATTRIBUTES))
        return (await self.execute_query(query, context)).data

    async def get_users_with_expiring_passwords(
        self,
        days: int = 14,
        context: Optional[CredentialContext] = None,
    ) -> list[dict]:
        """Users whose password expires within `days` days (and has not expired yet)."""
        max_age = int(self.max_password_age_days)
        day = _day_start()
        query = Query(
            type="password_expiry",
            filter=build_complex_filter(USER_FILTER, [
                FilterCondition("userAccountControl", "not_bit_and", UAC_DONT_EXPIRE_PASSWORD),
                FilterCondition("pwdLastSet", "less_or_equal", days_to_filetime(max_age - int(days) + 1, day)),
                FilterCondition("pwdLastSet", "greater_or_equal", days_to_filetime(max_age + 1, day)),
            ]),
            attributes=tuple(USER_ATTRIBUTES),
            parameters=(("days", int(days)), ("maxPasswordAge", max_age)),
        )
        users = (await self.execute_query(query, context)).data

        now = datetime.now(timezone.utc)
        out: list[dict] = []
        for u in users:
            if not u.get("passwordLastSet") or u.get("passwordNeverExpires"):
                continue
            try:
                last_set = datetime.fromisoformat(u["passwordLastSet"])
            except ValueError:
                continue
            until_expiry = (last_set + timedelta(days=max_age) - now) / timedelta(days=1)
            if 0 < until_expiry <= days:
                out.append(u)
        return out

    async def get_users_with_never_expiring_passwords(self, context: Optional[CredentialContext] = None) -> list[dict]:
        query = Query(
            type="never_expiring_passwords",
            filter=build_complex_filter(USER_FILTER, [
                FilterCondition("userAccountControl", "bit_and", UAC_DONT_EXPIRE_PASSWORD),
            ]),
            attributes=tuple(USER_ATTRIBUTES),
        )
        return (await self.execute_query(query, context)).data

    async def search_users(
        self,
        term: str,
        search_by: str = "displayName",
        context: Optional[CredentialContext] = None,
    ) -> list[dict]:
        attr = SEARCH_FIELDS.get(search_by)
        if attr is None:
            raise QueryValidationError(f"Unsupported search field: {search_by!r} (username, displayName or email)")
        query = Query(
            type="user_search",
            filter=build_complex_filter(USER_FILTER, [FilterCondition(attr, "contains", term)]),
            attributes=tuple(USER_ATTRIBUTES),
            limit=100,
        )
        return (await self.execute_query(query, context)).data

    async def get_user(self, username: str, context: Optional[CredentialContext] = None) -> Optional[dict]:
        """Lookup by sAMAccountName or UPN. None on miss or directory error."""
        name = (username or "").strip()
        if not name:
            return None
        flt = And((
            Equals("objectClass", "user"),
            Or((Equals("sAMAccountName", name), Equals("userPrincipalName", name))),
        ))
        query = Query(type="user_lookup", filter=flt.render(), attributes=tuple(USER_ATTRIBUTES), limit=1)
        try:
            result = await self.execute_query(query, context)
        except DirectoryError as e:
            logger.error("Failed to get user %s: %s", name, e)
            return None
        return result.data[0] if result.data else None

    async def execute_custom_query(
        self,
        custom_query: CustomQuery | Mapping[str, Any],
        parameters: Optional[Mapping[str, Any]] = None,
        context: Optional[CredentialContext] = None,
    ) -> QueryResult:
        cq = custom_query if isinstance(custom_query, CustomQuery) else CustomQuery.from_dict(custom_query)
        params = dict(parameters or {})

        if cq.filter:
            flt = substitute_parameters(cq.filter, params)
        elif cq.filters:
            conditions = [
                FilterCondition(c.field, c.operator, params[c.field] if c.field in params else c.value)
                for c in cq.filters
            ]
            flt = build_complex_filter(USER_FILTER, conditions)
        else:
            flt = USER_FILTER
        logger.debug("Custom query filter: %s", flt)

        if cq.fields:
            attributes = tuple(dict.fromkeys(resolve_field_alias(f.name) for f in cq.fields))
        else:
            attributes = tuple(USER_ATTRIBUTES)

        query = Query(
            type="custom",
            filter=flt,
            attributes=attributes,
            base_dn=cq.base_dn,
            scope=cq.scope or "sub",
            limit=cq.limit,
            order_by=cq.order_by,
            parameters=tuple(sorted((str(k), v) for k, v in params.items())),
        )
        result = await self.execute_query(query, context)
        if cq.fields:
            result.data = project_custom_fields(result.data, cq.fields)
        return result

    # ---------------------------
    # connectivity
    # ---------------------------

    def _update_connection_status(self, connected: bool, error: Optional[BaseException] = None) -> None:
        self.connection_status = {
            "connected": connected,
            "lastCheck": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "error": str(error) if error else None,
        }

    async def test_connection(self, context: Optional[CredentialContext] = None) -> bool:
        query = Query(
            type="test",
            filter="(objectClass=*)",
            attributes=("name",),
            scope="base",
            size_limit=1,
            use_cache=False,
        )
        try:
            await self.execute_query(query, context)
        except Exception as e:
            logger.warning("AD connection test failed: %s", e)
            self._update_connection_status(False, e)
            return False
        self._update_connection_status(True)
        return True

    async def authenticate_user(self, username: str, password: str) -> bool:
        """Bind with the user's own credentials on a throwaway connection."""
        if not username or not password:
            # an empty password would be an anonymous bind
            return False

        principal = Credentials(username=username, password=password, domain=self.domain or None).bind_principal
        options = self.pool.options_for_bind(principal, password)
        logger.info("Attempting AD authentication for user: %s", username)
        try:
            session = await asyncio.to_thread(self.pool.session_factory, options)
        except DirectoryError as e:
            logger.warning("AD authentication failed for %s: %s", username, e)
            return False
        except Exception as e:
            logger.error("AD authentication failed with exception: %s", e)
            return False

        try:
            await asyncio.to_thread(session.unbind)
        except Exception as e:
            logger.debug("Error during unbind: %s", e)
        logger.info("AD authentication successful for user: %s", username)
        return True

    # ---------------------------
    # cache / metrics
    # ---------------------------

    async def invalidate_cache(self, pattern: str = "*") -> int:
        if self.cache is None:
            return 0
        p = pattern or "*"
        if not p.startswith(f"{CACHE_PREFIX}:"):
            p = f"{CACHE_PREFIX}:{p}"
        try:
            keys = await self.cache.keys_matching(p)
            deleted = await self.cache.delete(*keys) if keys else 0
        except Exception as e:
            logger.warning("Cache invalidation failed for %s: %s", p, e)
            return 0
        logger.info("Invalidated %d cache entries matching %s", deleted, p)
        return deleted

    def get_metrics(self) -> dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "dataSource": "Active Directory",
            "baseDN": self.base_dn,
            "cachePrefix": CACHE_PREFIX,
            "connectionPoolSize": len(self.pool),
            "connectionStatus": dict(self.connection_status),
            "pool": self.pool.stats(),
            "queries": dict(self.counters),
        }
