"""Active Directory (LDAP) query layer.

Public API:
    - ADService (query pipeline + reports)
    - ConnectionPool, DirectorySession
    - Query / QueryResult / CustomQuery and friends
    - error taxonomy (DirectoryError and subclasses)
"""

from .errors import DataSourceError, DirectoryConnectionError, DirectoryError, QueryError, QueryValidationError
from .models import (
    ConnectionOptions,
    CredentialContext,
    Credentials,
    CustomField,
    CustomQuery,
    FilterCondition,
    OrderBy,
    PoolKey,
    Query,
    QueryResult,
)
from .pool import ConnectionPool, PooledConnection
from .session import DirectorySession, open_session
from .service import ADService

__all__ = [
    "ADService",
    "ConnectionOptions",
    "ConnectionPool",
    "CredentialContext",
    "Credentials",
    "CustomField",
    "CustomQuery",
    "DataSourceError",
    "DirectoryConnectionError",
    "DirectoryError",
    "DirectorySession",
    "FilterCondition",
    "OrderBy",
    "PoolKey",
    "PooledConnection",
    "Query",
    "QueryError",
    "QueryResult",
    "QueryValidationError",
    "open_session",
]
