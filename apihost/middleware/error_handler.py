"""
apihost — Error Handler Middleware
==================================

What:  Converts uncaught route errors into JSON error responses.
How:   Sits innermost in the API pipeline, directly around the routes.
       An exception escaping a route is formatted (full traceback), handed
       to the configured log sink and answered with an error response.
       HTTPException and other errors FastAPI already handles never get
       here.

Status code:
    The exception's ``status_code`` (or ``status``) attribute when it is an
    int in 400..599, otherwise 500.

Response body:
    {"error": "internal_server_error", "message": "..."}          (5xx)
    {"error": "request_error", "message": "<str(exc)>"}           (4xx)
    plus "details": "<traceback>" when expose_details is set.
"""

import logging
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from apihost.schemas import ErrorResponse
from apihost.utils import maybe_await

# (exception, formatted details, request) → None | Awaitable[None]
ErrorLogSink = Callable[[Exception, str, Request], Any]


@dataclass
class ErrorHandlerOptions:
    """
    Options for the error handler stage.

    Attributes:
        log:             Custom log sink. None logs through the host logger.
        expose_details:  Include the traceback in the response body.
                         Meant for local development.
    """

    log: Optional[ErrorLogSink] = None
    expose_details: bool = False


def format_error_details(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_status(exc: BaseException) -> int:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 400 <= value <= 599:
            return value
    return 500


def request_target(request: Request) -> str:
    """Path plus query string, as sent by the client."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def logger_sink(logger: logging.Logger) -> ErrorLogSink:
    """The default sink: ``Error in [METHOD] 'URL':\\n\\n<details>`` at ERROR."""

    def log(exc: Exception, details: str, request: Request) -> None:
        logger.error(
            "Error in [%s] '%s':\n\n%s",
            request.method,
            request_target(request),
            details,
            extra={"error_type": type(exc).__name__},
        )

    return log


class ErrorHandlerMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, log: ErrorLogSink, expose_details: bool = False, **kwargs):
        super().__init__(app, **kwargs)
        self.log = log
        self.expose_details = expose_details

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            details = format_error_details(exc)
            await maybe_await(self.log(exc, details, request))

            status = error_status(exc)
            if status >= 500:
                payload = ErrorResponse(
                    error="internal_server_error",
                    message="An unexpected error occurred. Please try again or contact support.",
                )
            else:
                payload = ErrorResponse(error="request_error", message=str(exc))
            if self.expose_details:
                payload.details = details
            return JSONResponse(status_code=status, content=payload.model_dump(exclude_none=True))
