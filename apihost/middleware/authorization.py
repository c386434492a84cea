"""
apihost — Authorization Middleware
==================================

What:  Evaluates the host's authorization predicate for every request.
How:   A truthy result calls through to the next stage; a falsy result ends
       the request with ``401`` and an empty body.

Errors raised by the predicate are NOT absorbed here. They propagate as a
fatal pipeline error; only the Basic-Auth adapter in ``apihost.auth``
turns its own failures into a denial.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from apihost.auth import ApiAuthorizer
from apihost.utils import maybe_await

logger = logging.getLogger(__name__)


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Gatekeeper stage: 401 unless the predicate grants the request."""

    def __init__(self, app, authorizer: ApiAuthorizer, **kwargs):
        super().__init__(app, **kwargs)
        self.authorizer = authorizer

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        is_valid = await maybe_await(self.authorizer(request))
        if is_valid:
            return await call_next(request)

        logger.info("Unauthorized request: %s %s", request.method, request.url.path)
        return Response(status_code=401)
