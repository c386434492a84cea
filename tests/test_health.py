"""
apihost — Health Route Tests
============================

What:  Tests for /api/health and the default host built by main.create_host().
How:   In-process requests through HTTPX's ASGITransport; the database is
       the Database double from conftest.
"""

import pytest

from apihost import __version__
from apihost.config import Settings
from apihost.host import ApiHost, create_database_host
from apihost.main import create_host
from apihost.pipeline import ERROR_HANDLER
from apihost.routes.health import create_health_router

from tests.helpers import make_client


def health_routes(host):
    def register(app, root):
        root.include_router(create_health_router(host))

    return register


class TestHealthRoute:

    @pytest.mark.asyncio
    async def test_healthy_without_database(self, settings):
        host = ApiHost(settings)
        host.set_route_registrar(health_routes(host))
        await host.initialize()

        async with make_client(host.app) as client:
            response = await client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == __version__
        assert body["environment"] == "prod"
        assert body["database"] is None

    @pytest.mark.asyncio
    async def test_database_checked(self, settings, fake_database_class):
        host = create_database_host(settings, database_class=fake_database_class)
        host.set_route_registrar(health_routes(host))
        await host.initialize()

        async with make_client(host.app) as client:
            response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        (db,) = fake_database_class.opened
        assert db.executed == ["SELECT 1"]
        assert db.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_unreachable_database_is_503(self, settings, fake_database_class):
        fake_database_class.fail_connect = True
        host = create_database_host(settings, database_class=fake_database_class)
        host.set_route_registrar(health_routes(host))
        await host.initialize()

        async with make_client(host.app) as client:
            response = await client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database"] == "disconnected"


class TestDefaultHost:

    @pytest.mark.asyncio
    async def test_create_host_serves_health_with_error_handler(self, settings):
        host = create_host(settings)
        await host.initialize()

        assert not host.has_database
        assert ERROR_HANDLER in host.pipeline.stage_names

        async with make_client(host.app) as client:
            response = await client.get("/api/health")

        assert response.status_code == 200

    def test_create_host_with_database(self, tmp_path):
        settings = Settings(_env_file=None, db_host="db.internal", storage_root=str(tmp_path))
        host = create_host(settings)
        assert host.has_database
