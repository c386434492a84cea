# Middleware package init
"""
apihost — Pipeline Stage Middleware
===================================

What:  One module per pipeline stage, applied to every request under /api.

Pipeline (order is fixed; optional stages are simply left out):
    Request → [Body Parser] → [X-Powered-By] → [Authorization]
            → [Diagnostics (dev only)] → Routes → [Error Handler]

    - Body parsing runs first so that every later stage sees a parsed body.
    - Authorization runs before diagnostics and routes: a denied request is
      answered with 401 and never reaches them.
    - The error handler wraps only the routes; errors raised by earlier
      stages are not converted.
"""

from apihost.middleware.authorization import AuthorizationMiddleware
from apihost.middleware.body_parser import BodyParserMiddleware, BodyParserOptions
from apihost.middleware.diagnostics import RequestTraceMiddleware
from apihost.middleware.error_handler import ErrorHandlerMiddleware, ErrorHandlerOptions
from apihost.middleware.powered_by import PoweredByMiddleware

__all__ = [
    "AuthorizationMiddleware",
    "BodyParserMiddleware",
    "BodyParserOptions",
    "ErrorHandlerMiddleware",
    "ErrorHandlerOptions",
    "PoweredByMiddleware",
    "RequestTraceMiddleware",
]
