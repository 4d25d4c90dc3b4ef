"""
Notebook data model and the interfaces of the external document/kernel provider.

The gateway never owns documents or cells. Every handler asks the provider
for the live document and re-reads cells on each use, so indices are never
taken from a stale copy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

MARKDOWN_LANGUAGE = "markdown"
DEFAULT_LANGUAGE = "python"


class CellKind(str, Enum):
    CODE = "code"
    MARKUP = "markup"

    @classmethod
    def from_cell_type(cls, cell_type: str) -> "CellKind":
        return cls.CODE if cell_type == "code" else cls.MARKUP


@dataclass(frozen=True)
class OutputItem:
    mime: str
    data: bytes


@dataclass(frozen=True)
class CellOutput:
    items: List[OutputItem] = field(default_factory=list)


@dataclass(frozen=True)
class Cell:
    """Read-only snapshot of one cell as the provider reported it."""

    index: int
    kind: CellKind
    content: str
    language: str
    execution_order: Optional[int] = None
    # Opaque token re-assigned each time the kernel finishes running the cell
    completion_marker: Optional[Any] = None
    outputs: List[CellOutput] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_code(self) -> bool:
        return self.kind is CellKind.CODE

    @property
    def is_blank(self) -> bool:
        return self.content.strip() == ""


@dataclass
class CellData:
    """A new cell to be written by an edit."""

    kind: CellKind
    content: str
    language: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class EditKind(str, Enum):
    INSERT = "insert"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass
class NotebookEdit:
    """One structural edit over the half-open range [start, stop)."""

    kind: EditKind
    start: int
    stop: int
    cells: List[CellData] = field(default_factory=list)

    @classmethod
    def insert(cls, position: int, cells: Sequence[CellData]) -> "NotebookEdit":
        return cls(EditKind.INSERT, position, position, list(cells))

    @classmethod
    def replace(cls, start: int, stop: int, cells: Sequence[CellData]) -> "NotebookEdit":
        return cls(EditKind.REPLACE, start, stop, list(cells))

    @classmethod
    def delete(cls, start: int, stop: int) -> "NotebookEdit":
        return cls(EditKind.DELETE, start, stop, [])


class NotebookDocument(ABC):
    """A live notebook owned by the provider."""

    @property
    @abstractmethod
    def uri(self) -> str: ...

    @property
    def notebook_type(self) -> str:
        return "jupyter-notebook"

    @property
    @abstractmethod
    def is_dirty(self) -> bool: ...

    @property
    def kernelspec(self) -> Optional[Dict[str, Any]]:
        return None

    @abstractmethod
    async def cell_count(self) -> int: ...

    @abstractmethod
    async def get_cells(self) -> List[Cell]: ...

    @abstractmethod
    async def apply_edit(self, edit: NotebookEdit) -> None: ...

    @abstractmethod
    async def execute_range(self, start: int, stop: int) -> None:
        """Ask the kernel to run [start, stop). Returns without waiting for completion."""

    @abstractmethod
    async def save(self) -> None: ...


class NotebookProvider(ABC):
    """Host that tracks the active notebook and its kernel."""

    @abstractmethod
    async def active_document(self) -> Optional[NotebookDocument]: ...

    @abstractmethod
    async def open_document(self, path: str) -> NotebookDocument: ...

    @abstractmethod
    async def restart_kernel(self) -> None: ...

    @abstractmethod
    async def interrupt_kernel(self) -> bool:
        """Interrupt the running kernel. Returns False when no kernel is running."""
