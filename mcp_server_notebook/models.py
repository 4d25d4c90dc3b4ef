"""
Pydantic V2 models for notebook tool arguments.

Each model is both the published input schema (``model_json_schema``) and the
validator applied to incoming ``tools/call`` arguments. Unknown fields are
ignored, so callers may send extra keys without being rejected.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator


class ToolArgs(BaseModel):
    """Base class for tool argument models."""

    model_config = ConfigDict(extra="ignore")


# ============================================================================
# CELL DEFINITIONS
# ============================================================================


class CellSpec(BaseModel):
    """A new cell as described by the caller; kind and language may be omitted."""

    model_config = ConfigDict(extra="ignore")

    content: StrictStr = Field(..., description="The content of the cell")
    cell_type: Optional[Literal["code", "markdown"]] = Field(
        default=None,
        description="The type of cell - either 'code' for executable cells or 'markdown' for text cells",
    )
    language_id: Optional[StrictStr] = Field(
        default=None,
        description=(
            "Optional language ID for code cells (e.g., 'python', 'javascript'). "
            "If not provided, it is inferred from existing code cells or defaults to 'python'"
        ),
    )

    @field_validator("content")
    @classmethod
    def validate_content(cls, v):
        # Null bytes corrupt the notebook JSON
        if "\x00" in v:
            raise ValueError("Cell content cannot contain null bytes")
        return v


class ToolCellSpec(CellSpec):
    """Cell definition accepted from callers; cell_type is mandatory."""

    cell_type: Literal["code", "markdown"] = Field(
        ...,
        description="The type of cell - either 'code' for executable cells or 'markdown' for text cells",
    )


# ============================================================================
# CELL MANIPULATION TOOLS
# ============================================================================


class InsertCellsArgs(ToolArgs):
    """Arguments for insert_notebook_cells."""

    cells: List[ToolCellSpec] = Field(
        ...,
        min_length=1,
        description="Array of cell definitions to insert. Each cell must specify content and cell_type.",
    )
    insert_position: Optional[StrictInt] = Field(
        default=None,
        description=(
            "Optional position to insert cells. Defaults to the end of the notebook. "
            "Must be between 0 and the current cell count"
        ),
    )
    noexec: StrictBool = Field(
        default=False,
        description="If true, skips execution of inserted code cells",
    )


class ReplaceCellsArgs(ToolArgs):
    """Arguments for replace_notebook_cells."""

    start_index: StrictInt = Field(
        ..., ge=0, description="The starting index (inclusive) of the range of cells to replace"
    )
    stop_index: StrictInt = Field(
        ...,
        ge=0,
        description=(
            "The stopping index (exclusive) of the range of cells to replace. Must be greater than "
            "start_index. To replace a single cell at index i, use start_index=i and stop_index=i+1"
        ),
    )
    cells: List[ToolCellSpec] = Field(..., description="Cells that take the place of the range")
    noexec: StrictBool = Field(default=False, description="If true, skips execution of the new code cells")


class ModifyCellArgs(ToolArgs):
    """Arguments for modify_notebook_cell_content."""

    cell_index: StrictInt = Field(
        ...,
        ge=0,
        description="The index of the cell to modify. Must be between 0 and the current cell count minus 1",
    )
    content: StrictStr = Field(
        ..., description="The new content for the cell. Keeps the cell's existing type and language"
    )
    noexec: StrictBool = Field(
        default=False, description="If true, skips execution of the modified cell if it's a code cell"
    )


class CellRangeArgs(ToolArgs):
    """Half-open cell range [start_index, stop_index)."""

    start_index: StrictInt = Field(..., ge=0, description="The starting index (inclusive) of the range of cells")
    stop_index: StrictInt = Field(
        ...,
        ge=0,
        description=(
            "The stopping index (exclusive) of the range of cells. Must be greater than start_index. "
            "For a single cell at index i, use start_index=i and stop_index=i+1"
        ),
    )


class ExecuteCellsArgs(CellRangeArgs):
    """Arguments for execute_notebook_cells."""


class DeleteCellsArgs(CellRangeArgs):
    """Arguments for delete_notebook_cells."""


# ============================================================================
# NOTEBOOK TOOLS
# ============================================================================


class OpenNotebookArgs(ToolArgs):
    """Arguments for open_notebook."""

    path: StrictStr = Field(
        ...,
        min_length=1,
        description=(
            "Path to the .ipynb notebook file to open, relative to workspace root. "
            "The file must exist and be a valid Jupyter notebook"
        ),
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        if not v.strip():
            raise ValueError("Notebook path cannot be empty")
        if not v.lower().endswith(".ipynb"):
            raise ValueError("Notebook must have .ipynb extension")
        return v
