"""
apihost — Test Configuration (conftest.py)
==========================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── settings: Settings isolated from the real environment / .env
    ├── dev_settings: Same, with APP_ENV=dev
    ├── demo_routes: Route registrar with a handful of test endpoints
    ├── host: ApiHost using settings + demo_routes
    └── fake_database_class: Database double counting connect/disconnect
"""

import os
from typing import Any, List

import pytest
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse

from apihost.config import Settings
from apihost.database import Database
from apihost.host import ApiHost

from tests.helpers import TeapotError


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Keep the developer's environment out of the tests
for _var in (
    "APP_PORT", "APP_HOST", "APP_ENV",
    "DB_DRIVER", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD", "DB_OPTIONS",
    "STORAGE_ROOT", "STORAGE_CONTAINER",
):
    os.environ.pop(_var, None)
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        app_host="127.0.0.1",
        storage_root=str(tmp_path / "storage"),
    )


@pytest.fixture
def dev_settings(tmp_path):
    return Settings(
        _env_file=None,
        app_host="127.0.0.1",
        app_env="dev",
        storage_root=str(tmp_path / "storage"),
    )


@pytest.fixture
def demo_routes():
    """
    Route registrar used by pipeline and host tests.

    /api/ping     GET   → {"pong": true}
    /api/echo     POST  → parsed body and raw body
    /api/boom     GET   → RuntimeError
    /api/teapot   GET   → TeapotError (status_code 418)
    /outside      GET   → "outside" (not under /api)
    """

    def register(app: FastAPI, root: APIRouter) -> None:
        @root.get("/ping")
        async def ping():
            return {"pong": True}

        @root.post("/echo")
        async def echo(request: Request):
            raw = await request.body()
            return {
                "body": getattr(request.state, "body", None),
                "raw": raw.decode("utf-8", errors="replace"),
            }

        @root.get("/boom")
        async def boom():
            raise RuntimeError("boom")

        @root.get("/teapot")
        async def teapot():
            raise TeapotError("short and stout")

        @app.get("/outside")
        async def outside():
            return PlainTextResponse("outside")

    return register


@pytest.fixture
def host(settings, demo_routes):
    return ApiHost(settings, route_registrar=demo_routes)


@pytest.fixture
def fake_database_class():
    """
    A Database subclass that never touches a real backend.

    Class attributes ``fail_connect`` / ``fail_disconnect`` switch on
    failures; ``opened`` lists every instance created.
    """
    opened: List[Any] = []

    class FakeDatabase(Database):
        fail_connect = False
        fail_disconnect = False

        def __init__(self, options):
            super().__init__(options)
            self.connect_calls = 0
            self.disconnect_calls = 0
            self.executed: List[Any] = []
            opened.append(self)

        async def connect(self) -> None:
            self.connect_calls += 1
            if self.fail_connect:
                raise OSError("connection refused")

        async def disconnect(self) -> None:
            self.disconnect_calls += 1
            if self.fail_disconnect:
                raise OSError("connection reset while closing")

        async def execute(self, statement, parameters=None):
            self.executed.append(statement)
            return None

    FakeDatabase.opened = opened
    return FakeDatabase
