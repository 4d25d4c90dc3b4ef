"""
Execution Tools - Running cells and controlling the kernel.

Includes: execute_notebook_cells, restart_kernel, interrupt_kernel
"""

from mcp_server_notebook.models import ExecuteCellsArgs
from mcp_server_notebook.observability import get_logger
from mcp_server_notebook.validation import validate_range

logger = get_logger(__name__)


def register_execution_tools(registry, ctx):
    """Register code execution and kernel control tools."""

    @registry.tool(args_model=ExecuteCellsArgs)
    async def execute_notebook_cells(args: ExecuteCellsArgs):
        """
        Execute a range of cells in the active notebook. Uses half-open range
        [start_index, stop_index) - meaning stop_index is exclusive.
        """
        document = await ctx.require_document("execute_notebook_cells")
        start, stop = validate_range(
            args.start_index, args.stop_index, await document.cell_count(), "execute_notebook_cells"
        )
        return await ctx.execute(document, start, stop)

    @registry.tool()
    async def restart_kernel():
        """
        Restart the kernel for the active notebook. This will stop the current
        kernel session and start a new one, clearing all variables and state.
        """
        document = await ctx.require_document("restart_kernel")
        await ctx.provider.restart_kernel()
        logger.info("kernel_restarted", uri=document.uri)
        return f"Kernel restarted for notebook: {document.uri}"

    @registry.tool()
    async def interrupt_kernel():
        """
        Interrupt the current kernel execution for the active notebook. This
        stops any currently running code without restarting the kernel session.
        """
        document = await ctx.require_document("interrupt_kernel")
        if not await ctx.provider.interrupt_kernel():
            logger.info("kernel_interrupt_skipped", uri=document.uri)
            return f"No running kernel to interrupt for notebook: {document.uri}"
        logger.info("kernel_interrupted", uri=document.uri)
        return f"Kernel interrupted for notebook: {document.uri}"
