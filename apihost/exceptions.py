"""
apihost — Custom Exception Hierarchy
====================================

What:  Application-specific exceptions for host, database and storage failures.
How:   Each exception carries a human-readable message and an optional
       context dict with debug details. Context is logged, never returned
       to HTTP clients.

Exception Hierarchy:
    ApiHostError (base)
    ├── BindError                   → start() could not bind / listen
    ├── DatabaseConnectionError     → open_database() could not connect
    ├── DatabaseNotConfiguredError  → host has no database capability
    ├── BlobStorageError            → blob store I/O failed
    │   └── BlobNotFoundError       → blob does not exist
    └── BodyParseError              → request body rejected (400/413/415)

Authorization denial is deliberately NOT an exception: a predicate returns
False and the pipeline answers 401.
"""

from typing import Any, Dict, Optional


class ApiHostError(Exception):
    """
    Base exception for all apihost errors.

    Attributes:
        message:  Human-readable error description
        context:  Additional debug info (logged, not sent to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class BindError(ApiHostError):
    """
    Raised when the listening socket cannot be bound.

    When:  start() hits an OSError from bind/listen (port in use,
           permission denied, unknown address).
    State: The host remains Stopped.
    """

    def __init__(
        self,
        host: str,
        port: int,
        reason: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Could not bind to {host}:{port}"
        if reason:
            message = f"{message}: {reason}"
        ctx = context or {}
        ctx["host"] = host
        ctx["port"] = port
        super().__init__(message=message, context=ctx)
        self.host = host
        self.port = port


class DatabaseConnectionError(ApiHostError):
    """
    Raised when a database session cannot be opened.

    When:  The underlying connect call fails (host unreachable, bad
           credentials, unknown driver).
    Note:  The password is never part of the message or the context.
    """

    def __init__(
        self,
        message: str = "Could not connect to the database",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseNotConfiguredError(ApiHostError):
    """Raised when database operations are requested from a host without a session manager."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="This host has no database session manager",
            context=context,
        )


class BlobStorageError(ApiHostError):
    """
    Raised when a blob store operation fails.

    When:  Disk full, permission denied, unreadable stream, I/O error.
    """

    def __init__(
        self,
        message: str = "Blob storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class BlobNotFoundError(BlobStorageError):
    """Raised by load() when the requested blob does not exist."""

    def __init__(self, path: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["path"] = path
        super().__init__(message=f"Blob '{path}' was not found", context=ctx)
        self.path = path


class BodyParseError(ApiHostError):
    """
    Raised by the body parser stage when a request body is rejected.

    HTTP:
        400  malformed body (bad JSON, strict mode violation, bad bytes)
        413  body larger than the configured limit
        415  unsupported content encoding or charset
    """

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error: str = "invalid_body",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.status_code = status_code
        self.error = error
