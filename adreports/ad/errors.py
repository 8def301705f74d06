from __future__ import annotations


class DirectoryError(Exception):
    """Base error of the directory query layer."""

    code = "DIRECTORY_ERROR"

    def __init__(self, message: str, code: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class QueryValidationError(DirectoryError):
    """Malformed or incomplete query. Raised before any I/O."""

    code = "INVALID_QUERY"


class DataSourceError(DirectoryError):
    """No usable credentials or a generic data source failure."""

    code = "OPERATION_FAILED"


class DirectoryConnectionError(DirectoryError):
    """Bind failed: bad credentials, unreachable endpoint or TLS failure."""

    code = "CONNECTION_FAILED"


class QueryError(DirectoryError):
    """Search failed after a successful bind."""

    code = "QUERY_FAILED"
