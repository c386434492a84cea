"""
apihost — Package Initializer
=============================

What: A configurable HTTP service host built on FastAPI and uvicorn.
How:  An ApiHost assembles the request pipeline, owns the listening socket
      and optionally exposes scoped database sessions.

Layering:

    ┌─────────────────────────────────────┐
    │        Host (lifecycle, socket)     │  ← host.py
    ├─────────────────────────────────────┤
    │     Pipeline (ordered middleware)   │  ← pipeline.py, middleware/
    ├─────────────────────────────────────┤
    │   Authorization strategies          │  ← auth.py
    ├─────────────────────────────────────┤
    │   Collaborators (DB, blob storage)  │  ← database.py, storage.py
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"

from apihost.auth import CredentialCheck, basic_authorizer, prefixed_authorizer
from apihost.config import Settings
from apihost.database import Database, DatabaseOptions, DatabaseSessionManager
from apihost.exceptions import (
    ApiHostError,
    BindError,
    BlobNotFoundError,
    BlobStorageError,
    DatabaseConnectionError,
    DatabaseNotConfiguredError,
)
from apihost.host import ApiHost, InitializeOptions, create_database_host
from apihost.pipeline import BodyParserOptions, ErrorHandlerOptions
from apihost.storage import BlobInfo, BlobStorageClient

__all__ = [
    "__version__",
    "ApiHost",
    "ApiHostError",
    "BindError",
    "BlobInfo",
    "BlobNotFoundError",
    "BlobStorageClient",
    "BlobStorageError",
    "BodyParserOptions",
    "CredentialCheck",
    "Database",
    "DatabaseConnectionError",
    "DatabaseNotConfiguredError",
    "DatabaseOptions",
    "DatabaseSessionManager",
    "ErrorHandlerOptions",
    "InitializeOptions",
    "Settings",
    "basic_authorizer",
    "create_database_host",
    "prefixed_authorizer",
]
