"""
Markdown rendering of cells, outputs and notebook summaries for AI callers.

[TOKENOMICS] Text outputs longer than the configured limit are truncated with
an explicit marker that reports the full length; binary outputs are listed by
size and MIME type only.
"""

from collections import Counter
from typing import Any, Dict, Optional, Sequence

from mcp_server_notebook.document import Cell, CellKind, NotebookDocument, OutputItem

TEXT_MIMES = {
    "application/vnd.code.notebook.stdout",
    "application/vnd.code.notebook.stderr",
    "application/json",
    "application/javascript",
}

SEPARATOR = "---\n\n"


def is_text_output(item: OutputItem) -> bool:
    return item.mime.startswith("text/") or item.mime in TEXT_MIMES


def format_output_item(position: int, item: OutputItem, max_output_size: int) -> str:
    if not is_text_output(item):
        return f"{position}. (Not shown) {len(item.data)} bytes with MIME: {item.mime}\n\n"

    try:
        text = item.data.decode("utf-8")
    except UnicodeDecodeError as e:
        return f"> Error extracting text content: {e}\n\n"

    if len(text) > max_output_size:
        truncated = text[: max(0, max_output_size - 3)]
        return (
            f"{position}. Truncated text with MIME: {item.mime}, full length: {len(text)} characters\n\n"
            f"```\n{truncated}...\n```\n\n"
        )
    return f"{position}. Text with MIME: {item.mime}\n\n```\n{text}\n```\n\n"


def format_cell(cell: Cell, max_output_size: int) -> str:
    """Render one cell: header, source and (for code cells) outputs."""
    if cell.kind is CellKind.CODE:
        result = f"## Cell {cell.index} (code:{cell.language})\n\n"
    else:
        result = f"## Cell {cell.index} (markdown)\n\n"

    if cell.kind is not CellKind.CODE:
        return result + f"```{cell.language}\n{cell.content}\n```\n\n"

    label = str(cell.execution_order) if cell.execution_order is not None else " "
    result += f"### In [{label}]:\n\n```{cell.language}\n{cell.content}\n```\n\n"

    if cell.outputs:
        result += f"### Out [{label}]:\n\n"
        for output in cell.outputs:
            result += f"#### Output with {len(output.items)} items\n\n"
            for position, item in enumerate(output.items, start=1):
                result += format_output_item(position, item, max_output_size)

    return result


def format_cells(cells: Sequence[Cell], max_output_size: int) -> str:
    if not cells:
        return "# Notebook Analysis\n\nThe notebook is empty - it contains no cells."

    result = f"# Notebook Analysis\n\nNotebook contains {len(cells)} cells:\n\n"
    for cell in cells:
        result += format_cell(cell, max_output_size)
        result += SEPARATOR
    return result


def format_execution_report(
    cells: Sequence[Cell],
    start: int,
    stop: int,
    max_output_size: int,
    timeout_seconds: float,
    completed: bool,
) -> str:
    result = "# Cell Execution Results\n\n"
    if not completed:
        result += f"> Mind that not all cells completed execution within {timeout_seconds:g} seconds!\n"
    result += f"Executed {len(cells)} code cells in range {start}-{stop - 1}.\n\n"
    for cell in cells:
        result += format_cell(cell, max_output_size)
        result += SEPARATOR
    return result


def format_no_code_cells(start: int, stop: int) -> str:
    return f"# Cell Execution\n\nNo code cells found in the specified range ({start}-{stop - 1})."


def kernel_display(kernelspec: Optional[Dict[str, Any]]) -> Optional[str]:
    if not kernelspec:
        return None
    return f"{kernelspec.get('display_name')} ({kernelspec.get('name')})"


async def format_notebook_info(document: Optional[NotebookDocument]) -> str:
    if document is None:
        return "# Notebook Information\n\nNo active notebook found."

    cells = await document.get_cells()
    code_cells = [c for c in cells if c.is_code]
    markdown_count = len(cells) - len(code_cells)
    executed_count = sum(1 for c in code_cells if c.execution_order is not None)
    languages = Counter(c.language for c in code_cells)
    kernelspec = document.kernelspec

    result = "# Notebook Information\n\n"
    result += "## Basic Information\n"
    result += f"- **URI**: {document.uri}\n"
    result += f"- **Notebook Type**: {document.notebook_type}\n"
    result += f"- **Dirty?**: {'true' if document.is_dirty else 'false'}\n"
    if kernelspec:
        result += f"- **Kernel Language**: {kernelspec.get('language')}\n"
        result += f"- **Kernel**: {kernel_display(kernelspec)}\n"
    result += "\n"

    result += "## Cell Statistics\n"
    result += f"- **Total Cells**: {len(cells)}\n"
    result += f"- **Markdown Cells**: {markdown_count}\n"
    result += f"- **Code Cells**: {len(code_cells)}\n"
    result += f"- **Executed Code Cells**: {executed_count}\n\n"

    if languages:
        result += "## Language Distribution\n"
        for language, count in languages.items():
            result += f"- **{language}**: {count} cells\n"

    return result
