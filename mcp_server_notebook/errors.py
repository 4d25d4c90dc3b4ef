"""
Error taxonomy for the notebook tool gateway.

Tool-level errors (validation, range, missing notebook, unknown tool) are
caught at the handler boundary and rendered into an ``isError`` tool result.
Transport-level errors (oversized or broken request bodies) are caught by the
request server and answered with a JSON-RPC / HTTP status instead.
"""

import json
from typing import Any, Dict, Optional


class ErrorCodes:
    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Notebook-specific errors
    NO_ACTIVE_NOTEBOOK = "NO_ACTIVE_NOTEBOOK"
    INDEX_OUT_OF_BOUNDS = "INDEX_OUT_OF_BOUNDS"
    NOTEBOOK_OPEN_FAILED = "NOTEBOOK_OPEN_FAILED"

    # Execution errors
    KERNEL_ERROR = "KERNEL_ERROR"

    # MCP server errors
    MCP_TOOL_ERROR = "MCP_TOOL_ERROR"
    MCP_TRANSPORT_ERROR = "MCP_TRANSPORT_ERROR"
    MCP_SERVER_START_FAILED = "MCP_SERVER_START_FAILED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


# JSON-RPC 2.0 error codes used at the transport level
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class NotebookToolError(Exception):
    """Base class for all gateway errors; carries a code and structured context."""

    code = ErrorCodes.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = {k: v for k, v in (context or {}).items() if v is not None}


class ValidationFailed(NotebookToolError):
    code = ErrorCodes.VALIDATION_ERROR


class NoActiveNotebook(NotebookToolError):
    code = ErrorCodes.NO_ACTIVE_NOTEBOOK

    def __init__(self, operation: Optional[str] = None):
        super().__init__("No active notebook editor found", context={"operation": operation})


class RangeOutOfBounds(NotebookToolError):
    code = ErrorCodes.INDEX_OUT_OF_BOUNDS

    def __init__(self, start: int, stop: int, cell_count: int, operation: Optional[str] = None):
        super().__init__(
            f"Range {start}-{stop} is invalid for {cell_count} cells",
            context={
                "startIndex": start,
                "stopIndex": stop,
                "cellCount": cell_count,
                "operation": operation,
            },
        )
        self.start = start
        self.stop = stop
        self.cell_count = cell_count


class IndexOutOfBounds(NotebookToolError):
    code = ErrorCodes.INDEX_OUT_OF_BOUNDS

    def __init__(self, index: int, cell_count: int, operation: Optional[str] = None):
        super().__init__(
            f"Index {index} is out of bounds (0-{cell_count - 1})",
            context={"cellIndex": index, "cellCount": cell_count, "operation": operation},
        )
        self.index = index
        self.cell_count = cell_count


class ToolNotFound(NotebookToolError):
    code = ErrorCodes.MCP_TOOL_ERROR

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}", context={"toolName": tool_name})
        self.tool_name = tool_name


class KernelError(NotebookToolError):
    code = ErrorCodes.KERNEL_ERROR


class RequestBodyError(NotebookToolError):
    """Failure while receiving a request body."""

    code = ErrorCodes.MCP_TRANSPORT_ERROR


class RequestTooLarge(RequestBodyError):
    def __init__(self, received: int, max_bytes: int):
        super().__init__(
            f"Request too large: {received} bytes (max: {max_bytes})",
            context={"received": received, "maxBytes": max_bytes},
        )
        self.received = received
        self.max_bytes = max_bytes


class RequestStreamError(RequestBodyError):
    pass


class ClientClosedRequest(RequestBodyError):
    def __init__(self, received: int = 0):
        super().__init__("Request closed by client", context={"received": received})


def format_for_agent(error: BaseException) -> str:
    """Render an error for an AI caller: code, message and the context needed to retry."""
    if isinstance(error, NotebookToolError):
        context = f" Context: {json.dumps(error.context)}" if error.context else ""
        return f"Error [{error.code}]: {error.message}{context}"
    return f"Error [{ErrorCodes.INTERNAL_ERROR}]: {type(error).__name__}: {error}"
