"""
Request Server
==============

Starlette application serving the single ``POST /mcp`` endpoint, plus the
lifecycle wrapper that runs it on uvicorn over a pre-bound socket.

Per request, before any body byte is read:

    OPTIONS -> 200 (CORS preflight)
    path != /mcp -> 404
    method != POST -> 405

then the body is read through a ``BoundedBodyReader`` and handed to the
protocol dispatcher under a per-request deadline. A late result after the
deadline is discarded; the handler itself keeps running.
"""

import asyncio
import json
import socket
from dataclasses import dataclass
from typing import Any, Callable, Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from mcp_server_notebook import __version__
from mcp_server_notebook.body_reader import BoundedBodyReader
from mcp_server_notebook.config import GatewaySettings
from mcp_server_notebook.dispatcher import ProtocolDispatcher, jsonrpc_error
from mcp_server_notebook.errors import (
    INTERNAL_ERROR,
    PARSE_ERROR,
    ErrorCodes,
    NotebookToolError,
    RequestBodyError,
    RequestTooLarge,
)
from mcp_server_notebook.observability import generate_request_id, get_logger

logger = get_logger(__name__)

MCP_PATH = "/mcp"
# Every method reaches the endpoint so it can answer OPTIONS, 404 and 405 itself
ENDPOINT_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
SHUTDOWN_GRACE_SECONDS = 5.0

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept, Mcp-Session-Id, Mcp-Protocol-Version",
}


def _peek_request_id(body: Optional[bytes]) -> Any:
    if not body:
        return None
    try:
        message = json.loads(body)
    except (ValueError, RecursionError):
        return None
    if isinstance(message, dict):
        return message.get("id")
    return None


class GatewayEndpoint:
    """
    Request handler for the gateway.

    The dispatcher is built lazily on the first request that needs it and
    dropped by ``reset()``.
    """

    def __init__(self, settings: GatewaySettings, dispatcher_factory: Callable[[], ProtocolDispatcher]):
        self.settings = settings
        self._dispatcher_factory = dispatcher_factory
        self._dispatcher: Optional[ProtocolDispatcher] = None
        self._late_tasks = set()

    @property
    def dispatcher(self) -> ProtocolDispatcher:
        if self._dispatcher is None:
            self._dispatcher = self._dispatcher_factory()
            logger.info("dispatcher_created")
        return self._dispatcher

    def reset(self):
        self._dispatcher = None

    async def handle(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        if request.url.path != MCP_PATH:
            return PlainTextResponse("Not Found", status_code=404)
        if request.method != "POST":
            return PlainTextResponse("Method not allowed", status_code=405)

        request_id = generate_request_id()
        state = {"body": None}
        try:
            task = asyncio.ensure_future(self._process(request, state))
            done, _ = await asyncio.wait({task}, timeout=self.settings.REQUEST_TIMEOUT_SECONDS)
            if task not in done:
                logger.warning(
                    "request_timeout", request_id=request_id, timeout=self.settings.REQUEST_TIMEOUT_SECONDS
                )
                self._late_tasks.add(task)
                task.add_done_callback(self._discard_late_result)
                return PlainTextResponse("Request timeout", status_code=408)
            return task.result()
        except Exception as e:
            logger.error("request_failed", request_id=request_id, error=str(e), exc_info=True)
            return JSONResponse(
                jsonrpc_error(_peek_request_id(state["body"]), INTERNAL_ERROR, "Internal error"),
                status_code=500,
            )

    async def _process(self, request: Request, state) -> Response:
        reader = BoundedBodyReader(self.settings.max_request_bytes)
        reader.check_declared_length(request.headers.get("content-length"))
        try:
            body = await reader.read(request.stream())
        except RequestTooLarge as e:
            return JSONResponse(jsonrpc_error(None, PARSE_ERROR, e.message), status_code=413)
        except RequestBodyError:
            return JSONResponse(jsonrpc_error(None, PARSE_ERROR, "Request body parse error"), status_code=400)

        state["body"] = body
        response = await self.dispatcher.handle_body(body)
        if response is None:
            return Response(status_code=202)
        status = 400 if response.get("error", {}).get("code") == PARSE_ERROR else 200
        return JSONResponse(response, status_code=status)

    def _discard_late_result(self, task: "asyncio.Future") -> None:
        self._late_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("late_request_failed", error=str(error))
        else:
            logger.info("late_request_result_discarded")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "healthy", "version": __version__})


def create_app(settings: GatewaySettings, dispatcher_factory: Callable[[], ProtocolDispatcher]):
    """Build the Starlette app. Returns the app and its endpoint (for lifecycle control)."""
    endpoint = GatewayEndpoint(settings, dispatcher_factory)
    app = Starlette(
        routes=[
            Route("/health", health_check, methods=["GET"]),
            Route("/{path:path}", endpoint.handle, methods=ENDPOINT_METHODS),
        ]
    )
    return app, endpoint


@dataclass(frozen=True)
class ServerHandle:
    port: int
    url: str
    server: uvicorn.Server
    task: "asyncio.Task"
    sock: socket.socket
    endpoint: GatewayEndpoint


class GatewayServer:
    """
    Lifecycle wrapper: ``start()`` returns a ``ServerHandle``, ``stop(handle)``
    consumes it. Several servers can run in one process.
    """

    def __init__(self, settings: GatewaySettings, dispatcher_factory: Callable[[], ProtocolDispatcher]):
        self.settings = settings
        self.dispatcher_factory = dispatcher_factory

    async def start(self) -> ServerHandle:
        app, endpoint = create_app(self.settings, self.dispatcher_factory)

        # Bind first and hand the socket to uvicorn to avoid TOCTOU races on the port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.HOST, self.settings.PORT))
            sock.listen(128)
        except OSError as e:
            sock.close()
            raise NotebookToolError(
                f"Failed to start MCP server: {e}",
                code=ErrorCodes.MCP_SERVER_START_FAILED,
                context={"port": self.settings.PORT},
            ) from e
        port = sock.getsockname()[1]

        config = uvicorn.Config(app=app, log_level="error", loop="asyncio", lifespan="off")
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                error = task.exception() if not task.cancelled() else None
                raise NotebookToolError(
                    f"Failed to start MCP server: {error}",
                    code=ErrorCodes.MCP_SERVER_START_FAILED,
                    context={"port": port},
                )
            await asyncio.sleep(0.01)

        url = f"http://{self.settings.HOST}:{port}{MCP_PATH}"
        logger.info("mcp_server_started", port=port, url=url)
        return ServerHandle(port=port, url=url, server=server, task=task, sock=sock, endpoint=endpoint)

    async def stop(self, handle: ServerHandle) -> None:
        """Graceful shutdown, forced after the grace period."""
        handle.server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(handle.task), timeout=SHUTDOWN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("mcp_server_forced_shutdown", port=handle.port)
            handle.server.force_exit = True
            await handle.task
        finally:
            handle.endpoint.reset()
            handle.sock.close()
        logger.info("mcp_server_stopped", port=handle.port)
