"""
apihost — API Host
==================

What:  Owns one request pipeline and one listening socket.
How:   initialize() builds a fresh pipeline from the current configuration,
       start() binds a socket and serves the pipeline with uvicorn,
       stop() shuts the server down. All three are serialized per host
       with an asyncio.Lock.

State machine:

          start() ok                     start()  → False
    ┌─────────┐ ─────────▶ ┌─────────┐
    │ Stopped │            │ Running │
    └─────────┘ ◀───────── └─────────┘
          stop() / initialize()          stop()   → False (when Stopped)

    - start() on bind failure raises BindError and stays Stopped.
    - A server that exits on its own (signal, crash) drops the host back
      to Stopped.
    - initialize() builds the new pipeline first, then drops a running
      server back to Stopped, then installs the new pipeline.

Database capability:
    A host composed with a DatabaseSessionManager (see
    create_database_host) exposes open_database() / with_database().
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

import uvicorn
from fastapi import APIRouter, FastAPI

from apihost.auth import (
    DEFAULT_PREFIX,
    ApiAuthorizer,
    BasicAuthAuthorizer,
    TokenAuthorizer,
    basic_authorizer,
    prefixed_authorizer,
)
from apihost.config import Settings
from apihost.database import (
    Database,
    DatabaseCapability,
    DatabaseOptions,
    DatabaseSessionManager,
)
from apihost.exceptions import BindError, DatabaseNotConfiguredError
from apihost.pipeline import (
    AppCreatedHook,
    BodyParserSetting,
    ErrorHandlerSetting,
    Pipeline,
    RouteRegistrar,
    build_pipeline,
)
from apihost.utils import to_str_safe

TResult = TypeVar("TResult")

DEFAULT_POWERED_BY = "apihost"
DEFAULT_LOGGER_NAME = "apihost.api"

LoggerSetup = Callable[[logging.Logger], None]


@dataclass
class InitializeOptions:
    """Options for ApiHost.initialize()."""

    # invoked with the outer app right after it has been created
    on_app_created: Optional[AppCreatedHook] = None


@dataclass
class RunningServer:
    server: uvicorn.Server
    task: "asyncio.Task[None]"
    sockets: List[socket.socket]
    port: int
    stopping: bool = False


@dataclass
class HostConfiguration:
    """
    Mutable state of one host.

    Invariant: ``server`` is not None iff the host is running.
    """

    pipeline: Optional[Pipeline] = None
    authorizer: Optional[ApiAuthorizer] = None
    powered_by: str = DEFAULT_POWERED_BY
    body_parser: BodyParserSetting = True
    error_handler: ErrorHandlerSetting = False
    server: Optional[RunningServer] = None


class ApiHost:
    """
    An HTTP API host.

    Args:
        settings:          Resolved once here; ``None`` loads from the
                           environment.
        database:          Optional database capability (usually a
                           DatabaseSessionManager).
        route_registrar:   ``(app, root_router) -> None``; registers the
                           endpoints on every initialize().
        logger_setup:      ``(logger) -> None``; configures the host logger
                           on every initialize().
        logger_name:       Name of the host logger.

    Example usage:
        host = ApiHost(route_registrar=register_routes)
        host.set_prefixed_authorizer(check_token)
        await host.initialize()
        await host.start(8080)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        database: Optional[DatabaseCapability] = None,
        route_registrar: Optional[RouteRegistrar] = None,
        logger_setup: Optional[LoggerSetup] = None,
        logger_name: str = DEFAULT_LOGGER_NAME,
    ):
        self._settings = settings if settings is not None else Settings()
        self._config = HostConfiguration()
        self._database = database
        self._route_registrar = route_registrar
        self._logger_setup = logger_setup
        self._logger_name = logger_name
        self._logger = logging.getLogger(logger_name)
        self._lock = asyncio.Lock()

    # ── Accessors ─────────────────────────────────────────────────────────

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def pipeline(self) -> Optional[Pipeline]:
        return self._config.pipeline

    @property
    def app(self) -> Optional[FastAPI]:
        """The outer application (None before initialize())."""
        pipeline = self._config.pipeline
        return pipeline.app if pipeline is not None else None

    @property
    def root(self) -> Optional[APIRouter]:
        """The router mounted under /api."""
        pipeline = self._config.pipeline
        return pipeline.root if pipeline is not None else None

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def is_running(self) -> bool:
        server = self._config.server
        return server is not None and not server.task.done()

    @property
    def server(self) -> Optional[uvicorn.Server]:
        """The uvicorn server while running."""
        server = self._config.server
        return server.server if self.is_running else None

    @property
    def port(self) -> Optional[int]:
        """The bound port while running."""
        server = self._config.server
        return server.port if self.is_running else None

    # ── Configuration ─────────────────────────────────────────────────────
    # Setters return the host so calls can be chained; changes take effect
    # on the next initialize().

    def get_authorizer(self) -> Optional[ApiAuthorizer]:
        return self._config.authorizer

    def set_authorizer(self, authorizer: Optional[ApiAuthorizer]) -> "ApiHost":
        self._config.authorizer = authorizer
        return self

    def set_prefixed_authorizer(self, check: TokenAuthorizer, prefix: str = DEFAULT_PREFIX) -> "ApiHost":
        """Authorize requests carrying ``Authorization: <prefix> <token>``."""
        return self.set_authorizer(prefixed_authorizer(check, prefix))

    def set_basic_auth(self, check: BasicAuthAuthorizer) -> "ApiHost":
        """Authorize requests carrying valid Basic-Auth credentials."""
        return self.set_authorizer(basic_authorizer(check))

    def get_powered_by(self) -> str:
        return self._config.powered_by

    def set_powered_by(self, value: Optional[str]) -> "ApiHost":
        """Identity header value; an empty value disables the header."""
        self._config.powered_by = to_str_safe(value).strip()
        return self

    def get_body_parser(self) -> BodyParserSetting:
        return self._config.body_parser

    def set_body_parser(self, setting: BodyParserSetting) -> "ApiHost":
        self._config.body_parser = setting
        return self

    def get_error_handler(self) -> ErrorHandlerSetting:
        return self._config.error_handler

    def set_error_handler(self, setting: ErrorHandlerSetting) -> "ApiHost":
        self._config.error_handler = setting
        return self

    def set_route_registrar(self, registrar: Optional[RouteRegistrar]) -> "ApiHost":
        self._route_registrar = registrar
        return self

    # ── Extension points ──────────────────────────────────────────────────

    def setup_api(self, app: FastAPI, root: APIRouter) -> None:
        """Register the endpoints of a freshly built pipeline."""
        if self._route_registrar is not None:
            self._route_registrar(app, root)

    def setup_logger(self, logger: logging.Logger) -> None:
        if self._logger_setup is not None:
            self._logger_setup(logger)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def initialize(self, options: Optional[InitializeOptions] = None) -> None:
        """
        (Re)build the request pipeline from the current configuration.

        A running server is shut down (host becomes Stopped) before the new
        pipeline is installed; call start() again to serve it.
        """
        async with self._lock:
            await self._initialize(options or InitializeOptions())

    async def start(self, port: Optional[int] = None) -> bool:
        """
        Start serving.

        Args:
            port: Explicit port. Falls back to APP_PORT, then to 80.

        Returns:
            True once the socket accepts connections, False if the host was
            already running (nothing is bound in that case).

        Raises:
            BindError: the socket could not be bound or listened on.
        """
        async with self._lock:
            if self.is_running:
                return False

            if self._config.pipeline is None:
                await self._initialize(InitializeOptions())

            bind_host = self._settings.app_host
            bind_port = self._settings.resolve_port(port)
            sock = self._bind(bind_host, bind_port)

            config = uvicorn.Config(
                self._config.pipeline.app,
                log_config=None,
                log_level=self._settings.log_level.lower(),
                access_log=False,
            )
            server = uvicorn.Server(config)
            task = asyncio.create_task(server.serve(sockets=[sock]))

            while not server.started:
                if task.done():
                    sock.close()
                    error = None if task.cancelled() else task.exception()
                    raise BindError(bind_host, bind_port, str(error or "server exited during startup")) from error
                await asyncio.sleep(0.01)

            actual_port = sock.getsockname()[1]
            running = RunningServer(server=server, task=task, sockets=[sock], port=actual_port)
            self._config.server = running
            task.add_done_callback(lambda _: self._on_server_exit(running))
            self._logger.info("Host listening on %s:%d", bind_host, actual_port)
            return True

    async def stop(self) -> bool:
        """
        Stop serving.

        Returns:
            True once the server is fully closed, False if it was not running.
        """
        async with self._lock:
            if not self.is_running:
                return False
            await self._shutdown()
            return True

    async def wait_closed(self) -> None:
        """Wait until the running server exits (signal or stop())."""
        server = self._config.server
        if server is not None:
            await asyncio.shield(server.task)

    async def _initialize(self, options: InitializeOptions) -> None:
        logger = logging.getLogger(self._logger_name)
        self.setup_logger(logger)

        pipeline = build_pipeline(
            logger=logger,
            setup_api=self.setup_api,
            authorizer=self._config.authorizer,
            powered_by=self._config.powered_by,
            body_parser=self._config.body_parser,
            error_handler=self._config.error_handler,
            local_dev=self._settings.is_local_dev,
            on_app_created=options.on_app_created,
        )

        if self.is_running:
            await self._shutdown()

        self._config.pipeline = pipeline
        self._logger = logger

    @staticmethod
    def _bind(host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            return socket.create_server((host, port), family=family)
        except OSError as e:
            raise BindError(host, port, e.strerror or str(e)) from e

    async def _shutdown(self) -> None:
        running = self._config.server
        running.stopping = True
        running.server.should_exit = True
        try:
            await running.task
        finally:
            for sock in running.sockets:
                sock.close()
            self._config.server = None
            self._logger.info("Host stopped (port %d)", running.port)

    def _on_server_exit(self, running: RunningServer) -> None:
        # exits not requested through stop() / initialize(): signals, crashes
        if running.stopping or self._config.server is not running:
            return
        self._config.server = None
        for sock in running.sockets:
            sock.close()

        error = None if running.task.cancelled() else running.task.exception()
        if error is not None:
            self._logger.error("Server on port %d crashed: %s", running.port, error, exc_info=error)
        else:
            self._logger.info("Server on port %d exited", running.port)

    # ── Database capability ───────────────────────────────────────────────

    @property
    def has_database(self) -> bool:
        return self._database is not None

    @property
    def database(self) -> DatabaseCapability:
        if self._database is None:
            raise DatabaseNotConfiguredError()
        return self._database

    async def open_database(self, options: Optional[DatabaseOptions] = None) -> Database:
        return await self.database.open_database(options)

    async def with_database(
        self,
        action: Callable[[Database], Union[TResult, Awaitable[TResult]]],
        options: Optional[DatabaseOptions] = None,
    ) -> TResult:
        return await self.database.with_database(action, options)


def create_database_host(
    settings: Optional[Settings] = None,
    *,
    database_class=Database,
    **kwargs,
) -> ApiHost:
    """Build a host composed with a DatabaseSessionManager sharing its settings."""
    settings = settings if settings is not None else Settings()
    manager = DatabaseSessionManager(settings, database_class=database_class)
    return ApiHost(settings, database=manager, **kwargs)
