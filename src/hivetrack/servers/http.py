"""
HTTP transport for the hook server.

Hook scripts POST one JSON object per event to any path on the loopback
port. The response body is the merged decision. Every failure path still
answers with ``decision: allow`` so a broken daemon never blocks a CLI.
"""

from __future__ import annotations

import errno
import json
import logging
import socket
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from hivetrack.config.app import HookServerSettings
from hivetrack.hooks.server import HookServer

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type"
REJECTED_METHODS = ["GET", "PUT", "PATCH", "DELETE", "HEAD"]


class HookServerStartError(RuntimeError):
    """Raised when the hook server cannot bind its port."""


class HTTPServer:
    """
    FastAPI application wrapping a :class:`HookServer`.

    Example:
        ```python
        server = HTTPServer(hook_server, HookServerSettings())
        await server.serve()
        ```
    """

    def __init__(
        self,
        hook_server: HookServer,
        settings: HookServerSettings | None = None,
        on_startup: Callable[[], Awaitable[None]] | None = None,
        on_shutdown: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.hook_server = hook_server
        self.settings = settings or HookServerSettings()
        self._on_startup = on_startup
        self._on_shutdown = on_shutdown
        self.running = False
        self.app = self._create_app()

    @property
    def port(self) -> int:
        return self.settings.port

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            """Handle application startup and shutdown."""
            if self._on_startup is not None:
                await self._on_startup()
            self.running = True
            logger.info(f"Hook server listening on http://{self.settings.host}:{self.port}")
            try:
                yield
            finally:
                self.running = False
                if self._on_shutdown is not None:
                    await self._on_shutdown()
                logger.info("Hook server stopped")

        app = FastAPI(
            title="hivetrack hook server",
            lifespan=lifespan,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        app.state.hook_server = self.hook_server

        self._register_middleware(app)
        self._register_exception_handlers(app)
        self._register_routes(app)
        return app

    def _register_middleware(self, app: FastAPI) -> None:
        cors_origin = self.settings.cors_origin

        @app.middleware("http")
        async def cors_headers(
            request: Request, call_next: Callable[[Request], Awaitable[Response]]
        ) -> Response:
            """Attach the fixed CORS headers to every response."""
            response = await call_next(request)
            response.headers["Access-Control-Allow-Origin"] = cors_origin
            response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
            response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
            return response

    def _register_exception_handlers(self, app: FastAPI) -> None:
        """
        Register global exception handlers.

        Internals are logged, never returned. The decision stays ``allow``.
        """

        @app.exception_handler(Exception)
        async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
            logger.error(
                f"Unhandled exception in hook server: {exc}",
                exc_info=True,
                extra={"path": request.url.path, "method": request.method},
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "decision": "allow"},
            )

    def _register_routes(self, app: FastAPI) -> None:
        """Register the catch-all routes."""

        @app.post("/{path:path}")
        async def receive_hook(request: Request, path: str) -> JSONResponse:
            """Process one hook event posted by a CLI hook script."""
            body = await request.body()
            try:
                payload = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning(f"Malformed hook request body: {e}", extra={"path": request.url.path})
                return JSONResponse(
                    status_code=400,
                    content={"error": "Bad request", "decision": "allow"},
                )
            if not isinstance(payload, dict):
                logger.warning(
                    f"Hook request body is {type(payload).__name__}, expected object",
                    extra={"path": request.url.path},
                )
                return JSONResponse(
                    status_code=400,
                    content={"error": "Bad request", "decision": "allow"},
                )

            hook_server: HookServer = app.state.hook_server
            try:
                response = await hook_server.process_event(payload, path=request.url.path)
            except Exception as e:
                logger.error(
                    f"Error processing hook request: {e}",
                    exc_info=True,
                    extra={"path": request.url.path},
                )
                return JSONResponse(
                    status_code=500,
                    content={"error": "Internal server error", "decision": "allow"},
                )
            return JSONResponse(status_code=200, content=response.to_dict())

        @app.options("/{path:path}")
        async def preflight(path: str) -> Response:
            """CORS preflight."""
            return Response(status_code=200)

        @app.api_route("/{path:path}", methods=REJECTED_METHODS)
        async def method_not_allowed(path: str) -> JSONResponse:
            return JSONResponse(status_code=405, content={"error": "Method not allowed"})

    def _bind_socket(self) -> socket.socket:
        """Bind the listening socket up front so a busy port fails loudly."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.host, self.port))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                raise HookServerStartError(f"Port {self.port} is already in use") from e
            raise HookServerStartError(
                f"Cannot bind hook server to {self.settings.host}:{self.port}: {e}"
            ) from e
        sock.set_inheritable(True)
        return sock

    async def serve(self) -> None:
        """
        Serve until uvicorn receives SIGINT or SIGTERM.

        Raises:
            HookServerStartError: If the port cannot be bound.
        """
        import uvicorn

        sock = self._bind_socket()
        config = uvicorn.Config(
            self.app,
            log_level="info",
            access_log=False,
            log_config=None,
            timeout_keep_alive=5,
            timeout_graceful_shutdown=5,
            lifespan="on",
        )
        server = uvicorn.Server(config)
        try:
            await server.serve(sockets=[sock])
        finally:
            sock.close()
