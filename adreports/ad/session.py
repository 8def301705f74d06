from __future__ import annotations

import logging
import ssl
from typing import Any, Optional

from ldap3 import ALL, ALL_ATTRIBUTES, BASE, LEVEL, SUBTREE, SYNC, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException, LDAPOperationResult

from .errors import DirectoryConnectionError, QueryError
from .models import ConnectionOptions
from .utils import mask_dn


logger = logging.getLogger(__name__)

_SCOPES = {"base": BASE, "one": LEVEL, "sub": SUBTREE}

# result codes that still carry usable entries
_PARTIAL_OK = {0, 4}  # success, sizeLimitExceeded

PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
# server refused the paged results control
_PAGING_REJECTED = {12, 53}  # unavailableCriticalExtension, unwillingToPerform


class DirectorySession:
    """One bound ldap3 connection.

    All methods are blocking; the pool runs them in worker threads and makes
    sure only one operation uses a session at a time.
    """

    def __init__(
        self,
        options: ConnectionOptions,
        *,
        server: Optional[Server] = None,
        client_strategy: str = SYNC,
    ) -> None:
        self.options = options
        self.client_strategy = client_strategy
        if server is None:
            tls = Tls(validate=ssl.CERT_REQUIRED if options.tls_validate else ssl.CERT_NONE)
            server = Server(
                options.url,
                get_info=ALL,
                tls=tls,
                connect_timeout=float(options.connect_timeout),
            )
        self.server = server
        self.conn: Connection | None = None

    @property
    def bound(self) -> bool:
        return bool(self.conn is not None and self.conn.bound)

    def bind(self) -> None:
        conn: Connection | None = None
        try:
            conn = Connection(
                self.server,
                user=self.options.bind_dn,
                password=self.options.bind_password,
                auto_bind=False,
                client_strategy=self.client_strategy,
                receive_timeout=int(self.options.timeout),
            )
            conn.open()
            if self.options.use_tls:
                conn.start_tls()
            if not conn.bind():
                res = dict(conn.result or {})
                self._safe_unbind(conn)
                reason = res.get("description") or res.get("message") or "bind rejected"
                raise DirectoryConnectionError("LDAP bind failed", cause=LDAPException(reason))
        except LDAPException as e:
            self._safe_unbind(conn)
            raise DirectoryConnectionError("LDAP bind failed", cause=e) from e

        self.conn = conn
        logger.info("LDAP bind successful (%s as %s)", self.options.url, mask_dn(self.options.bind_dn))

    def unbind(self) -> None:
        conn, self.conn = self.conn, None
        self._safe_unbind(conn)

    @staticmethod
    def _safe_unbind(conn: Connection | None) -> None:
        if conn is None:
            return
        try:
            conn.unbind()
        except Exception as e:
            logger.debug("Error during unbind: %s", e)

    def is_alive(self, time_limit: int = 5) -> bool:
        """Root DSE lookup. Any failure means the connection is unusable."""
        if self.conn is None:
            return False
        try:
            ok = self.conn.search(
                search_base="",
                search_filter="(objectClass=*)",
                search_scope=BASE,
                attributes=["namingContexts"],
                size_limit=1,
                time_limit=time_limit,
            )
            return bool(ok) and len(self.conn.response or []) > 0
        except Exception as e:
            logger.debug("Liveness check failed: %s", e)
            return False

    def supports_paging(self) -> bool:
        """False only when the root DSE was read and lacks the paged results control."""
        info = getattr(self.server, "info", None)
        controls = getattr(info, "supported_controls", None) if info is not None else None
        if not controls:
            return True
        oids = {str(c[0]) if isinstance(c, (tuple, list)) else str(c) for c in controls}
        return PAGED_RESULTS_OID in oids

    def search(
        self,
        base_dn: str,
        search_filter: str,
        *,
        scope: str = "sub",
        attributes: list[str] | None = None,
        size_limit: int = 1000,
        time_limit: int = 30,
        paged: bool = True,
        page_size: int = 1000,
    ) -> list[dict[str, Any]]:
        """Run a search and return [{"dn": ..., "attributes": {...}}]."""
        if self.conn is None:
            raise QueryError("LDAP search failed", cause=LDAPException("connection is not bound"))

        search_scope = _SCOPES.get(scope, SUBTREE)
        attrs = list(attributes) if attributes else [ALL_ATTRIBUTES]

        if paged and self.supports_paging():
            try:
                return self._paged_search(base_dn, search_filter, search_scope, attrs, size_limit, time_limit, page_size)
            except LDAPOperationResult as e:
                if e.result not in _PAGING_REJECTED:
                    raise QueryError("LDAP search failed", cause=e) from e
                logger.info("Server rejected paged results (%s), searching without paging", e.description)
            except LDAPException as e:
                raise QueryError("LDAP search failed", cause=e) from e

        try:
            self.conn.search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=search_scope,
                attributes=attrs,
                size_limit=size_limit,
                time_limit=time_limit,
            )
        except LDAPException as e:
            raise QueryError("LDAP search failed", cause=e) from e

        self._check_result(search_filter, base_dn)
        return [self._entry(e) for e in (self.conn.response or []) if e.get("type") == "searchResEntry"]

    def _paged_search(self, base_dn, search_filter, search_scope, attrs, size_limit, time_limit, page_size):
        items: list[dict[str, Any]] = []
        for entry in self.conn.extend.standard.paged_search(
            search_base=base_dn,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attrs,
            time_limit=time_limit,
            paged_size=page_size,
            generator=True,
        ):
            if entry.get("type") != "searchResEntry":
                continue
            items.append(self._entry(entry))
            if size_limit and len(items) >= size_limit:
                return items
        self._check_result(search_filter, base_dn)
        return items

    def _check_result(self, search_filter: str, base_dn: str) -> None:
        res = dict(self.conn.result or {})
        code = res.get("result", 0)
        if code in _PARTIAL_OK:
            if code == 4:
                logger.debug("Size limit exceeded, returning partial result (%s)", search_filter)
            return
        reason = res.get("description") or res.get("message") or f"result code {code}"
        logger.error("LDAP search error: %s (filter=%s, base=%s)", reason, search_filter, base_dn)
        raise QueryError("LDAP search failed", cause=LDAPException(reason))

    @staticmethod
    def _entry(raw: dict[str, Any]) -> dict[str, Any]:
        return {"dn": raw.get("dn", ""), "attributes": dict(raw.get("attributes") or {})}


def open_session(options: ConnectionOptions) -> DirectorySession:
    """Create and bind a session (blocking)."""
    session = DirectorySession(options)
    session.bind()
    return session
