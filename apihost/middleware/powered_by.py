"""
apihost — Identity Header Middleware
====================================

What:  Adds an ``X-Powered-By`` header carrying the product identity to every response.
When:  Installed only when the host's identity value is non-empty.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

POWERED_BY_HEADER = "X-Powered-By"


class PoweredByMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, value: str, **kwargs):
        super().__init__(app, **kwargs)
        self.value = value

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers[POWERED_BY_HEADER] = self.value
        return response
