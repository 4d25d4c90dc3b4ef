"""
Notebook tool handlers, organized by domain:
- notebook_tools: info, cell listing, save, open
- cell_tools: insert, replace, modify, delete
- execution_tools: execute range, restart and interrupt kernel
"""

from mcp_server_notebook.registry import ToolRegistry
from mcp_server_notebook.tools.base import ToolContext
from mcp_server_notebook.tools.cell_tools import register_cell_tools
from mcp_server_notebook.tools.execution_tools import register_execution_tools
from mcp_server_notebook.tools.notebook_tools import register_notebook_tools


def register_all_tools(registry, ctx):
    """Register all tool modules. Order is the order of the published tool list."""
    register_notebook_tools(registry, ctx)
    register_cell_tools(registry, ctx)
    register_execution_tools(registry, ctx)


def build_registry(ctx: ToolContext) -> ToolRegistry:
    registry = ToolRegistry()
    register_all_tools(registry, ctx)
    registry.compile()
    return registry
