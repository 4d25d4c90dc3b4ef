"""
Notebook Tools - Notebook-level operations.

Includes: get_notebook_info, get_notebook_cells, save_notebook, open_notebook
"""

import json

from mcp_server_notebook import formatting
from mcp_server_notebook.models import OpenNotebookArgs
from mcp_server_notebook.observability import get_logger

logger = get_logger(__name__)


def register_notebook_tools(registry, ctx):
    """Register notebook-level tools."""

    @registry.tool()
    async def get_notebook_info():
        """
        Get comprehensive information about the active notebook, including URI,
        kernel, and cell statistics.
        """
        document = await ctx.provider.active_document()
        return await formatting.format_notebook_info(document)

    @registry.tool()
    async def get_notebook_cells():
        """
        Get information about all cells in the active notebook. Includes cell
        indexes, types, content, and outputs.
        """
        document = await ctx.require_document("get_notebook_cells")
        cells = await document.get_cells()
        return formatting.format_cells(cells, ctx.settings.MAX_OUTPUT_SIZE)

    @registry.tool()
    async def save_notebook():
        """Save the active notebook to disk."""
        document = await ctx.require_document("save_notebook")
        await document.save()
        logger.info("notebook_saved", uri=document.uri)
        return f"Successfully saved notebook: {document.uri}"

    @registry.tool(args_model=OpenNotebookArgs)
    async def open_notebook(args: OpenNotebookArgs):
        """
        Open a specified .ipynb file in the workspace and make it the active
        notebook editor.
        """
        document = await ctx.provider.open_document(args.path)
        kernelspec = document.kernelspec or {}
        info = {
            "uri": document.uri,
            "notebookType": document.notebook_type,
            "isDirty": document.is_dirty,
            "kernelLanguage": kernelspec.get("language"),
            "kernelName": formatting.kernel_display(kernelspec),
            "cellCount": await document.cell_count(),
        }
        return json.dumps(
            {
                "status": "success",
                "message": f"Notebook opened and activated: {args.path}",
                "notebook": {k: v for k, v in info.items() if v is not None},
            },
            indent=2,
        )
