"""
Range/index validation and cell reconciliation for notebook edits.

All checks take the *live* cell count, read by the caller inside the same
handler invocation that uses it.
"""

from typing import List, Optional, Sequence

from mcp_server_notebook.document import (
    DEFAULT_LANGUAGE,
    MARKDOWN_LANGUAGE,
    Cell,
    CellData,
    CellKind,
)
from mcp_server_notebook.errors import IndexOutOfBounds, RangeOutOfBounds, ValidationFailed
from mcp_server_notebook.models import CellSpec


def validate_range(start: int, stop: int, cell_count: int, operation: Optional[str] = None):
    """
    Validate a half-open range [start, stop) against the current cell count.

    Checks, in order: start >= 0, start < cell_count, stop > start,
    stop <= cell_count.

    Raises:
        RangeOutOfBounds: carrying start, stop and the actual cell count
    """
    if start < 0 or start >= cell_count:
        raise RangeOutOfBounds(start, stop, cell_count, operation)
    if stop <= start or stop > cell_count:
        raise RangeOutOfBounds(start, stop, cell_count, operation)
    return start, stop


def validate_index(index: int, cell_count: int, operation: Optional[str] = None) -> int:
    if index < 0 or index >= cell_count:
        raise IndexOutOfBounds(index, cell_count, operation)
    return index


def clamp_insert_position(position: Optional[int], cell_count: int) -> int:
    """Insert position defaults to the end and is clamped into [0, cell_count]."""
    if position is None:
        return cell_count
    return min(max(0, position), cell_count)


def first_code_language(cells: Sequence[Cell]) -> Optional[str]:
    for cell in cells:
        if cell.is_code and cell.language:
            return cell.language
    return None


def build_inserted_cells(specs: Sequence[CellSpec], existing: Sequence[Cell]) -> List[CellData]:
    """
    Turn inserted cell specs into cell data.

    Code cells without a language take the language of the first code cell in
    the notebook, falling back to python.
    """
    fallback = first_code_language(existing) or DEFAULT_LANGUAGE
    result = []
    for spec in specs:
        kind = CellKind.from_cell_type(spec.cell_type or "code")
        if kind is CellKind.MARKUP:
            language = MARKDOWN_LANGUAGE
        else:
            language = spec.language_id or fallback
        result.append(CellData(kind=kind, content=spec.content, language=language))
    return result


def reconcile_replacement_cells(
    specs: Sequence[CellSpec], replaced: Sequence[Cell], operation: Optional[str] = None
) -> List[CellData]:
    """
    Turn replacement cell specs into cell data, filling omitted fields from the
    cells being replaced.

    Kind: explicit cell_type, else the kind of the replaced cell at the same
    position (or of the first replaced cell past the end of the range).
    Language of a code cell: explicit language_id, else the positional peer's
    language when it is a code cell, else the first code cell in the replaced
    range, else python. Markdown cells always use 'markdown'.
    Metadata of the positional peer is kept when the kinds match.
    """
    range_fallback = first_code_language(replaced) or DEFAULT_LANGUAGE
    result = []
    for i, spec in enumerate(specs):
        peer = replaced[i] if i < len(replaced) else None

        if spec.cell_type:
            kind = CellKind.from_cell_type(spec.cell_type)
        elif replaced:
            kind = (peer or replaced[0]).kind
        else:
            kind = CellKind.CODE

        if kind is CellKind.MARKUP:
            if spec.language_id is not None and spec.language_id != MARKDOWN_LANGUAGE:
                raise ValidationFailed(
                    "language_id must be 'markdown' for markdown cells.",
                    context={"operation": operation, "cellPosition": i, "languageId": spec.language_id},
                )
            language = MARKDOWN_LANGUAGE
        elif spec.language_id:
            language = spec.language_id
        elif peer is not None and peer.is_code:
            language = peer.language
        else:
            language = range_fallback

        metadata = dict(peer.metadata) if peer is not None and peer.kind is kind else {}
        result.append(CellData(kind=kind, content=spec.content, language=language, metadata=metadata))
    return result
