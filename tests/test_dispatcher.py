"""
Tests for the JSON-RPC protocol dispatcher and the tool registry.
"""

import json

import mcp.types as types
import pytest

from mcp_server_notebook.errors import ToolNotFound
from mcp_server_notebook.registry import EMPTY_INPUT_SCHEMA, ToolDefinition, ToolRegistry

EXPECTED_TOOLS = [
    "get_notebook_info",
    "get_notebook_cells",
    "save_notebook",
    "open_notebook",
    "insert_notebook_cells",
    "replace_notebook_cells",
    "modify_notebook_cell_content",
    "delete_notebook_cells",
    "execute_notebook_cells",
    "restart_kernel",
    "interrupt_kernel",
]


def _request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestEnvelope:
    async def test_parse_error(self, dispatcher):
        response = await dispatcher.handle_body(b"{not json")
        assert response == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}

    async def test_invalid_utf8_is_parse_error(self, dispatcher):
        response = await dispatcher.handle_body(b"\xff\xfe\x00")
        assert response["error"]["code"] == -32700

    async def test_deeply_nested_body_is_parse_error(self, dispatcher):
        depth = 100000
        response = await dispatcher.handle_body(b"[" * depth + b"]" * depth)
        assert response == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}

    async def test_batch_rejected(self, dispatcher):
        response = await dispatcher.handle_body(json.dumps([_request("ping")]).encode())
        assert response["error"]["code"] == -32600

    async def test_wrong_version_rejected(self, dispatcher):
        response = await dispatcher.dispatch({"jsonrpc": "1.0", "id": 3, "method": "ping"})
        assert response == {"jsonrpc": "2.0", "id": 3, "error": {"code": -32600, "message": "Invalid Request"}}

    async def test_unknown_method(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/list"))
        assert response["error"]["code"] == -32601
        assert "resources/list" in response["error"]["message"]

    async def test_notification_has_no_response(self, dispatcher):
        assert await dispatcher.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None

    async def test_non_object_params(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", params=[1, 2]))
        assert response["error"]["code"] == -32602

    async def test_tool_call_without_name(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", params={"arguments": {}}))
        assert response["error"]["code"] == -32602


class TestMethods:
    async def test_initialize(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("initialize", {"protocolVersion": types.LATEST_PROTOCOL_VERSION, "capabilities": {}})
        )
        result = response["result"]
        assert result["protocolVersion"] == types.LATEST_PROTOCOL_VERSION
        assert result["serverInfo"]["name"] == "mcp-server-notebook"
        assert "tools" in result["capabilities"]

    async def test_initialize_unknown_version_falls_back(self, dispatcher):
        response = await dispatcher.dispatch(_request("initialize", {"protocolVersion": "1999-01-01"}))
        assert response["result"]["protocolVersion"] == types.LATEST_PROTOCOL_VERSION

    async def test_ping(self, dispatcher):
        assert await dispatcher.dispatch(_request("ping", request_id="abc")) == {
            "jsonrpc": "2.0",
            "id": "abc",
            "result": {},
        }

    async def test_tools_list(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/list"))
        tools = response["result"]["tools"]
        assert [t["name"] for t in tools] == EXPECTED_TOOLS
        by_name = {t["name"]: t for t in tools}
        insert_schema = by_name["insert_notebook_cells"]["inputSchema"]
        assert insert_schema["required"] == ["cells"]
        assert "insert_position" in insert_schema["properties"]
        assert by_name["save_notebook"]["inputSchema"]["properties"] == {}
        assert by_name["execute_notebook_cells"]["description"].startswith("Execute a range of cells")


class TestToolCall:
    async def test_unknown_tool_is_tool_error(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", {"name": "format_disk", "arguments": {}}))
        result = response["result"]
        assert result["isError"] is True
        assert result["content"][0]["type"] == "text"
        assert "Unknown tool: format_disk" in result["content"][0]["text"]
        assert '"toolName": "format_disk"' in result["content"][0]["text"]

    async def test_validation_lists_every_failing_field(self, call_tool):
        text, is_error = await call_tool("replace_notebook_cells", {"start_index": -1, "cells": "nope"})
        assert is_error
        assert "Invalid parameters for replace_notebook_cells:" in text
        assert "start_index: Input should be greater than or equal to 0" in text
        assert "stop_index: Field required" in text
        assert "cells: Input should be a valid list" in text

    async def test_unexpected_exception_becomes_tool_error(self, dispatcher, document):
        async def boom(start, stop):
            raise RuntimeError("kernel bridge exploded")

        document.execute_range = boom
        response = await dispatcher.dispatch(
            _request("tools/call", {"name": "execute_notebook_cells", "arguments": {"start_index": 1, "stop_index": 2}})
        )
        result = response["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error [INTERNAL_ERROR]: RuntimeError: kernel bridge exploded"

    async def test_missing_arguments_defaults_to_empty(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", {"name": "get_notebook_cells"}))
        assert response["result"]["isError"] is False


class TestRegistry:
    def test_compile_is_idempotent_and_frozen(self):
        registry = ToolRegistry()

        @registry.tool()
        async def hello():
            """Say hello."""
            return "hi"

        table = registry.compile()
        assert registry.compile() is table
        assert table["hello"].description == "Say hello."
        with pytest.raises(TypeError):
            table["other"] = None
        with pytest.raises(RuntimeError):

            @registry.tool()
            async def late():
                return ""

    def test_duplicate_names_rejected(self):
        registry = ToolRegistry()

        @registry.tool(name="dup")
        async def first():
            return ""

        with pytest.raises(ValueError):

            @registry.tool(name="dup")
            async def second():
                return ""

    def test_definition_defaults_to_empty_schema(self):
        async def noop():
            return ""

        first = ToolDefinition(name="a", description="", handler=noop)
        second = ToolDefinition(name="b", description="", handler=noop)
        assert first.input_schema == EMPTY_INPUT_SCHEMA
        assert first.input_schema is not second.input_schema
        assert first.as_mcp_tool().inputSchema == EMPTY_INPUT_SCHEMA

    def test_unknown_tool(self):
        with pytest.raises(ToolNotFound):
            ToolRegistry().get("nothing")
