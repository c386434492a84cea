"""
apihost — Request Pipeline Builder
==================================

What:  Assembles the ordered middleware stages of a host into a fresh
       FastAPI application.
How:   build_pipeline() turns the host's current configuration into a list
       of PipelineStage objects, flattens them into one Starlette
       middleware list (first = outermost) and mounts the resulting API
       application under /api on a new outer application.

Application layout:

    ┌──────────────────────────────────────────────────────────┐
    │ outer FastAPI app  (on_app_created hook, extra routes)   │
    │                                                          │
    │   /api  →  API FastAPI app                               │
    │            ┌──────────────────────────────────────────┐  │
    │            │ body_parser?  → powered_by?              │  │
    │            │ → authorization? → diagnostics?          │  │
    │            │ → routes (APIRouter) → error_handler?    │  │
    │            └──────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────────┘

Stage order is fixed whatever subset of optional stages is enabled.
Paths outside /api never pass through these stages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Union

from fastapi import APIRouter, FastAPI
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from apihost import __version__
from apihost.auth import ApiAuthorizer
from apihost.middleware.authorization import AuthorizationMiddleware
from apihost.middleware.body_parser import BodyParserMiddleware, BodyParserOptions
from apihost.middleware.diagnostics import RequestTraceMiddleware
from apihost.middleware.error_handler import (
    ErrorHandlerMiddleware,
    ErrorHandlerOptions,
    logger_sink,
)
from apihost.middleware.powered_by import PoweredByMiddleware

API_PREFIX = "/api"

BODY_PARSER = "body_parser"
POWERED_BY = "powered_by"
AUTHORIZATION = "authorization"
DIAGNOSTICS = "diagnostics"
ROUTES = "routes"
ERROR_HANDLER = "error_handler"

STAGE_ORDER = (BODY_PARSER, POWERED_BY, AUTHORIZATION, DIAGNOSTICS, ROUTES, ERROR_HANDLER)

# False = disabled, True = defaults, options / mapping = overrides
BodyParserSetting = Union[bool, BodyParserOptions, Mapping[str, Any]]
# False = disabled, True = host logger, options = custom sink
ErrorHandlerSetting = Union[bool, ErrorHandlerOptions]

RouteRegistrar = Callable[[FastAPI, APIRouter], None]
AppCreatedHook = Callable[[FastAPI], None]


@dataclass
class PipelineStage:
    """One ordered unit of request processing, backed by zero or more middleware."""

    name: str
    middleware: List[Middleware] = field(default_factory=list)


@dataclass
class Pipeline:
    """Result of one (re)initialization: the applications plus their stages."""

    app: FastAPI
    api: FastAPI
    root: APIRouter
    stages: List[PipelineStage]

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]


def merge_body_parser_options(setting: BodyParserSetting) -> BodyParserOptions:
    """Merge custom body parser options over the defaults."""
    if setting is True:
        return BodyParserOptions()
    if isinstance(setting, BodyParserOptions):
        overrides = setting.model_dump(exclude_unset=True)
    else:
        overrides = dict(setting)
    return BodyParserOptions.model_validate({**BodyParserOptions().model_dump(), **overrides})


def build_pipeline(
    *,
    logger: logging.Logger,
    setup_api: RouteRegistrar,
    authorizer: Optional[ApiAuthorizer] = None,
    powered_by: str = "",
    body_parser: BodyParserSetting = True,
    error_handler: ErrorHandlerSetting = False,
    local_dev: bool = False,
    on_app_created: Optional[AppCreatedHook] = None,
    title: str = "apihost",
) -> Pipeline:
    """
    Build a complete, not yet served, request pipeline.

    Args:
        logger:          Host logger; used by dev diagnostics and the default
                         error log sink.
        setup_api:       Route registration callback, invoked with the outer
                         app and the API router.
        authorizer:      Request predicate; None disables the stage.
        powered_by:      Identity header value; "" disables the stage.
        body_parser:     Body parsing setting.
        error_handler:   Error handler setting.
        local_dev:       Enables the diagnostics stage.
        on_app_created:  Invoked with the outer app right after it is created.

    Returns:
        Pipeline whose ``app`` is the ASGI application to serve.
    """
    app = FastAPI(title=title, version=__version__)
    if on_app_created is not None:
        on_app_created(app)

    stages: List[PipelineStage] = []

    if body_parser is not False and body_parser is not None:
        options = merge_body_parser_options(body_parser)
        stages.append(PipelineStage(BODY_PARSER, [Middleware(BodyParserMiddleware, options=options)]))

    identity = (powered_by or "").strip()
    if identity:
        stages.append(PipelineStage(POWERED_BY, [Middleware(PoweredByMiddleware, value=identity)]))

    if authorizer is not None:
        stages.append(PipelineStage(AUTHORIZATION, [Middleware(AuthorizationMiddleware, authorizer=authorizer)]))

    if local_dev:
        stages.append(PipelineStage(DIAGNOSTICS, [
            Middleware(RequestTraceMiddleware, logger=logger),
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["*"],
                allow_headers=["*"],
            ),
        ]))

    stages.append(PipelineStage(ROUTES))

    if error_handler:
        handler_options = error_handler if isinstance(error_handler, ErrorHandlerOptions) else ErrorHandlerOptions()
        sink = handler_options.log or logger_sink(logger)
        stages.append(PipelineStage(ERROR_HANDLER, [
            Middleware(ErrorHandlerMiddleware, log=sink, expose_details=handler_options.expose_details),
        ]))

    middleware = [m for stage in stages for m in stage.middleware]
    api = FastAPI(title=f"{title} API", version=__version__, middleware=middleware)

    root = APIRouter()
    setup_api(app, root)
    api.include_router(root)

    app.mount(API_PREFIX, api)

    logger.debug("Pipeline built: %s", " → ".join(stage.name for stage in stages))
    return Pipeline(app=app, api=api, root=root, stages=stages)
