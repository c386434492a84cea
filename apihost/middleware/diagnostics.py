"""
apihost — Development Diagnostics Middleware
============================================

What:  Traces every API request (headers, method, query parameters).
When:  Local development only (APP_ENV is dev / development / local). The
       pipeline builder never installs it anywhere else; together with a
       permissive CORSMiddleware it forms the diagnostics stage.

Log record (DEBUG, on the host logger):
    request {"headers": {...}, "method": "GET", "query": {...}}

Header values are logged verbatim, credentials included. This is why the
stage is bound to local development.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

default_logger = logging.getLogger(__name__)


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """Logs request metadata at DEBUG before handing the request on."""

    def __init__(self, app, logger: Optional[logging.Logger] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.logger = logger or default_logger

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        self.logger.debug(
            "request %s",
            {
                "headers": dict(request.headers),
                "method": request.method,
                "query": dict(request.query_params),
            },
            extra={
                "method": request.method,
                "path": request.url.path,
            },
        )
        return await call_next(request)
