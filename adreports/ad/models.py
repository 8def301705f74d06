from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping, Optional


Scope = Literal["base", "one", "sub"]
Direction = Literal["asc", "desc"]

SCOPES = ("base", "one", "sub")
DIRECTIONS = ("asc", "desc")

# per-process key for identity digests of explicit credentials
_IDENTITY_KEY = secrets.token_bytes(32)


@dataclass
class Credentials:
    username: str
    password: str
    domain: Optional[str] = None
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""

    def identity_digest(self) -> str:
        """Keyed digest over the whole identity, secrets included."""
        parts = (self.username, self.domain, self.password, self.tenant_id, self.client_id, self.client_secret)
        msg = "\x00".join(p or "" for p in parts).encode("utf-8")
        return hmac.new(_IDENTITY_KEY, msg, hashlib.sha256).hexdigest()[:16]

    @property
    def bind_principal(self) -> str:
        u = (self.username or "").strip()
        d = (self.domain or "").strip().strip(".")
        if not u:
            return ""
        if "@" in u or "=" in u or "\\" in u:
            return u
        return f"{u}@{d}" if d else u


@dataclass(frozen=True)
class CredentialContext:
    user_id: Optional[int] = None
    use_system_credentials: bool = False
    credentials: Optional[Credentials] = field(default=None, compare=False, hash=False)

    @property
    def credential_source(self) -> str:
        """Credential source class used in pool keys: explicit-<digest> | system | user-<id> | default.

        Same precedence as credential resolution: explicit credentials win.
        """
        if self.credentials is not None:
            return f"explicit-{self.credentials.identity_digest()}"
        if self.use_system_credentials:
            return "system"
        if self.user_id is not None:
            return f"user-{self.user_id}"
        return "default"

    @property
    def cache_scope(self) -> str:
        if self.credentials is not None:
            return f"explicit:{self.credentials.identity_digest()}"
        if self.use_system_credentials:
            return "system"
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return "default"


@dataclass(frozen=True)
class ConnectionOptions:
    url: str
    bind_dn: str
    bind_password: str = field(repr=False)
    timeout: float = 30.0
    connect_timeout: float = 10.0
    use_tls: bool = False
    tls_validate: bool = False


@dataclass(frozen=True)
class PoolKey:
    url: str
    bind_dn: str
    credential_source: str

    def __str__(self) -> str:
        return f"{self.url}:{self.bind_dn or 'anonymous'}:{self.credential_source}"


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: Direction = "asc"

    @classmethod
    def parse(cls, raw: Any) -> Optional["OrderBy"]:
        if raw is None or isinstance(raw, OrderBy):
            return raw
        if isinstance(raw, Mapping):
            return cls(field=str(raw.get("field") or ""), direction=str(raw.get("direction") or "asc").lower())
        return cls(field=str(raw))


@dataclass(frozen=True)
class FilterCondition:
    field: str
    operator: str
    value: Any = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "FilterCondition":
        return cls(field=d.get("field") or "", operator=d.get("operator") or "", value=d.get("value"))


@dataclass(frozen=True)
class Query:
    """Immutable description of one directory search."""

    type: str
    filter: Optional[str] = None
    attributes: tuple[str, ...] = ()
    base_dn: Optional[str] = None
    scope: str = "sub"
    size_limit: Optional[int] = None
    limit: Optional[int] = None
    order_by: Optional[OrderBy] = None
    use_cache: bool = True
    paged: bool = True
    parameters: tuple[tuple[str, Any], ...] = ()

    def shape(self) -> dict[str, Any]:
        """Everything that influences the result, for cache keys."""
        return {
            "type": self.type,
            "filter": self.filter,
            "attributes": list(self.attributes),
            "base_dn": self.base_dn,
            "scope": self.scope,
            "size_limit": self.size_limit,
            "limit": self.limit,
            "order_by": asdict(self.order_by) if self.order_by else None,
            "parameters": [[k, v] for k, v in self.parameters],
        }


@dataclass
class QueryResult:
    data: list[dict[str, Any]]
    count: int
    execution_time_ms: int
    cached: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "count": self.count,
            "executionTime": self.execution_time_ms,
            "cached": self.cached,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "QueryResult":
        data = d["data"]
        if not isinstance(data, list):
            raise ValueError("data must be a list")
        return cls(
            data=data,
            count=int(d.get("count", len(data))),
            execution_time_ms=int(d.get("executionTime") or 0),
            cached=bool(d.get("cached", False)),
            metadata=dict(d.get("metadata") or {}),
        )


@dataclass(frozen=True)
class CustomField:
    name: str
    display_name: Optional[str] = None

    @property
    def output_name(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class CustomQuery:
    """Ad-hoc report definition coming from the report builder."""

    filter: Optional[str] = None
    filters: tuple[FilterCondition, ...] = ()
    fields: tuple[CustomField, ...] = ()
    base_dn: Optional[str] = None
    scope: str = "sub"
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CustomQuery":
        fields = []
        for f in d.get("fields") or []:
            if isinstance(f, str):
                fields.append(CustomField(name=f))
            else:
                fields.append(CustomField(name=f.get("name") or "", display_name=f.get("displayName")))
        return cls(
            filter=d.get("filter") if isinstance(d.get("filter"), str) else None,
            filters=tuple(FilterCondition.from_dict(x) for x in (d.get("filters") or [])),
            fields=tuple(f for f in fields if f.name),
            base_dn=d.get("baseDN") or d.get("base_dn"),
            scope=d.get("scope") or "sub",
            order_by=OrderBy.parse(d.get("orderBy") or d.get("order_by")),
            limit=d.get("limit"),
        )
