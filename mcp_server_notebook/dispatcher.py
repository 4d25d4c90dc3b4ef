"""
Protocol Dispatcher
===================

Routes a decoded JSON-RPC 2.0 envelope to its handler.

Supported methods: initialize, ping, tools/list, tools/call. Notifications
(envelopes without an id) are accepted and produce no response.

For tools/call, every failure after the envelope was decoded (unknown tool,
invalid arguments, out-of-range indices, missing notebook, unexpected
handler exceptions) is returned as a tool result with ``isError: true``.
Those never become transport faults.
"""

import json
from typing import Any, Dict, Optional

import mcp.types as types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS

from mcp_server_notebook import __version__
from mcp_server_notebook.errors import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    METHOD_NOT_FOUND,
    NotebookToolError,
    format_for_agent,
)
from mcp_server_notebook.observability import generate_request_id, get_logger, get_tracer
from mcp_server_notebook.registry import ToolRegistry

logger = get_logger(__name__)
tracer = get_tracer(__name__)

SERVER_NAME = "mcp-server-notebook"


class _InvalidParams(Exception):
    pass


def jsonrpc_result(request_id, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_error(request_id, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


def text_result(text: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


class ProtocolDispatcher:
    """Stateless JSON-RPC method router backed by a compiled tool registry."""

    def __init__(self, registry: ToolRegistry, server_name: str = SERVER_NAME, server_version: str = __version__):
        self.registry = registry
        self.registry.compile()
        self.server_name = server_name
        self.server_version = server_version
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    async def handle_body(self, body: bytes) -> Optional[Dict[str, Any]]:
        """Decode a raw request body and dispatch it. Decode failures never raise."""
        try:
            message = json.loads(body)
        except (ValueError, UnicodeDecodeError, RecursionError) as e:
            logger.warning("jsonrpc_parse_error", error=str(e), size=len(body))
            return jsonrpc_error(None, PARSE_ERROR, "Parse error")
        return await self.dispatch(message)

    async def dispatch(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one decoded envelope.

        Returns the response envelope, or None for notifications. Exceptions
        raised by non-tool methods propagate to the request server.
        """
        if not isinstance(message, dict):
            return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request")

        request_id = message.get("id")
        method = message.get("method")
        if message.get("jsonrpc") != "2.0" or not isinstance(method, str):
            return jsonrpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        if "id" not in message:
            logger.debug("notification_received", method=method)
            return None

        handler = self._methods.get(method)
        if handler is None:
            logger.warning("method_not_found", method=method)
            return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return jsonrpc_error(request_id, INVALID_PARAMS, "Invalid params: expected an object")

        try:
            result = await handler(params)
        except _InvalidParams as e:
            return jsonrpc_error(request_id, INVALID_PARAMS, str(e))
        return jsonrpc_result(request_id, result)

    async def _initialize(self, params):
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else types.LATEST_PROTOCOL_VERSION
        result = types.InitializeResult(
            protocolVersion=version,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability(listChanged=False)),
            serverInfo=types.Implementation(name=self.server_name, version=self.server_version),
        )
        return _dump(result)

    async def _ping(self, params):
        return {}

    async def _list_tools(self, params):
        return _dump(types.ListToolsResult(tools=self.registry.list_tools()))

    async def _call_tool(self, params):
        name = params.get("name")
        if not isinstance(name, str):
            raise _InvalidParams("Invalid params: 'name' must be a string")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}

        req_id = generate_request_id()
        logger.info("tool_call_start", tool=name, request_id=req_id)

        with tracer.start_as_current_span(f"tool.{name}") as span:
            span.set_attribute("tool.name", name)
            try:
                definition = self.registry.get(name)
                args = self.registry.validate(definition, arguments)
                if definition.args_model is not None:
                    text = await definition.handler(args)
                else:
                    text = await definition.handler()
            except NotebookToolError as e:
                logger.warning("tool_call_failed", tool=name, code=e.code, error=e.message, request_id=req_id)
                span.set_attribute("tool.error_code", e.code)
                return _dump(text_result(format_for_agent(e), is_error=True))
            except Exception as e:
                logger.error("tool_execution_failed", tool=name, error=str(e), request_id=req_id, exc_info=True)
                span.record_exception(e)
                return _dump(text_result(format_for_agent(e), is_error=True))

        logger.info("tool_call_success", tool=name, request_id=req_id)
        return _dump(text_result(text))
