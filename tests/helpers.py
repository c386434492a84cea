"""Small helpers shared by the test modules."""

from httpx import ASGITransport, AsyncClient


def make_client(app) -> AsyncClient:
    """HTTPX AsyncClient talking to ``app`` in-process."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TeapotError(Exception):
    status_code = 418
