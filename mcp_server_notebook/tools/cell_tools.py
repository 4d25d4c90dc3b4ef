"""
Cell Tools - Structural edits over the active notebook.

Includes: insert_notebook_cells, replace_notebook_cells,
modify_notebook_cell_content, delete_notebook_cells

Every tool reads the live cell count right before validating and applying its
edit, so indices computed by an earlier call are always re-checked.
"""

from mcp_server_notebook.document import NotebookEdit
from mcp_server_notebook.models import (
    CellSpec,
    DeleteCellsArgs,
    InsertCellsArgs,
    ModifyCellArgs,
    ReplaceCellsArgs,
)
from mcp_server_notebook.observability import get_logger
from mcp_server_notebook.validation import (
    build_inserted_cells,
    clamp_insert_position,
    reconcile_replacement_cells,
    validate_index,
    validate_range,
)

logger = get_logger(__name__)


def register_cell_tools(registry, ctx):
    """Register cell manipulation tools."""

    @registry.tool(args_model=InsertCellsArgs)
    async def insert_notebook_cells(args: InsertCellsArgs):
        """
        Insert multiple cells at a specified position in the active notebook.
        By default, new code cells are executed unless noexec is true.
        """
        document = await ctx.require_document("insert_notebook_cells")
        existing = await document.get_cells()
        position = clamp_insert_position(args.insert_position, len(existing))
        if args.insert_position is not None and position != args.insert_position:
            logger.info("insert_position_clamped", requested=args.insert_position, position=position)

        new_cells = build_inserted_cells(args.cells, existing)
        await document.apply_edit(NotebookEdit.insert(position, new_cells))

        result = f"Successfully inserted {len(new_cells)} new cells at position {position}."
        if args.noexec:
            return result

        report = await ctx.execute(document, position, position + len(new_cells))
        return f"{result}\n\n{report}"

    @registry.tool(args_model=ReplaceCellsArgs)
    async def replace_notebook_cells(args: ReplaceCellsArgs):
        """
        Replace a range of cells in the notebook with new cells. Uses half-open
        range [start_index, stop_index) - meaning stop_index is exclusive.
        Executed automatically unless noexec is true.
        """
        document = await ctx.require_document("replace_notebook_cells")
        return await _replace_range(
            document,
            args.start_index,
            args.stop_index,
            args.cells,
            noexec=args.noexec,
            operation="replace_notebook_cells",
        )

    @registry.tool(args_model=ModifyCellArgs)
    async def modify_notebook_cell_content(args: ModifyCellArgs):
        """
        Modify the content of an existing cell. By default, modified code cells
        are executed unless noexec is true.
        """
        document = await ctx.require_document("modify_notebook_cell_content")
        index = validate_index(args.cell_index, await document.cell_count(), "modify_notebook_cell_content")

        await _replace_range(
            document,
            index,
            index + 1,
            [CellSpec(content=args.content)],
            noexec=True,
            operation="modify_notebook_cell_content",
        )

        result = f"Successfully modified cell at index {index} with new content."
        if args.noexec:
            return result

        report = await ctx.execute(document, index, index + 1)
        return f"{result}\n\n{report}"

    @registry.tool(args_model=DeleteCellsArgs)
    async def delete_notebook_cells(args: DeleteCellsArgs):
        """
        Delete a range of cells from the notebook. Uses half-open range
        [start_index, stop_index) - meaning stop_index is exclusive.
        """
        document = await ctx.require_document("delete_notebook_cells")
        start, stop = validate_range(
            args.start_index, args.stop_index, await document.cell_count(), "delete_notebook_cells"
        )
        await document.apply_edit(NotebookEdit.delete(start, stop))

        count = stop - start
        plural = "s" if count != 1 else ""
        return f"Successfully deleted {count} cell{plural} from index {start} to {stop - 1}."

    async def _replace_range(document, start, stop, specs, noexec, operation):
        existing = await document.get_cells()
        start, stop = validate_range(start, stop, len(existing), operation)

        new_cells = reconcile_replacement_cells(specs, existing[start:stop], operation)
        await document.apply_edit(NotebookEdit.replace(start, stop, new_cells))

        result = f"Successfully replaced {stop - start} cells with {len(new_cells)} new cells."
        if noexec or not new_cells:
            return result

        report = await ctx.execute(document, start, start + len(new_cells))
        return f"{result}\n\n{report}"
