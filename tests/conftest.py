"""
Pytest configuration and fixtures for the notebook tool gateway tests.

The fake provider below keeps cells in memory and lets each test decide
whether (and when) an execute command completes.
"""

import itertools
from typing import List, Optional

import pytest

from mcp_server_notebook.config import GatewaySettings
from mcp_server_notebook.dispatcher import ProtocolDispatcher
from mcp_server_notebook.document import (
    Cell,
    CellKind,
    CellOutput,
    EditKind,
    NotebookDocument,
    NotebookEdit,
    NotebookProvider,
    OutputItem,
)
from mcp_server_notebook.errors import ErrorCodes, NotebookToolError
from mcp_server_notebook.synchronizer import ExecutionSynchronizer
from mcp_server_notebook.tools import build_registry
from mcp_server_notebook.tools.base import ToolContext

STDOUT = "application/vnd.code.notebook.stdout"


def code(content, language="python", metadata=None):
    return {"kind": CellKind.CODE, "content": content, "language": language, "metadata": metadata or {}}


def markdown(content, metadata=None):
    return {"kind": CellKind.MARKUP, "content": content, "language": "markdown", "metadata": metadata or {}}


class FakeNotebookDocument(NotebookDocument):
    """
    In-memory notebook.

    ``completion`` controls execute_range:
      - "instant": markers change as soon as the command is issued
      - "never": markers never change (forces a timeout)
      - int N: markers change on the N-th get_cells() after the command
    """

    def __init__(self, cells=None, uri="file:///work/test.ipynb", kernelspec=None, completion="instant"):
        self._cells = [dict(c, order=None, marker=None, outputs=[]) for c in (cells or [])]
        self._uri = uri
        self._kernelspec = kernelspec
        self.completion = completion
        self.dirty = False
        self.saved = 0
        self.edits: List[NotebookEdit] = []
        self.execute_calls = []
        self.reads = 0
        self._pending: Optional[tuple] = None
        self._reads_until_done = None
        self._counter = itertools.count(1)

    @property
    def uri(self):
        return self._uri

    @property
    def is_dirty(self):
        return self.dirty

    @property
    def kernelspec(self):
        return self._kernelspec

    async def cell_count(self):
        return len(self._cells)

    async def get_cells(self):
        self.reads += 1
        if self._pending is not None and self._reads_until_done is not None:
            self._reads_until_done -= 1
            if self._reads_until_done <= 0:
                self.complete(*self._pending)
        return [
            Cell(
                index=i,
                kind=c["kind"],
                content=c["content"],
                language=c["language"],
                execution_order=c["order"],
                completion_marker=c["marker"],
                outputs=list(c["outputs"]),
                metadata=dict(c["metadata"]),
            )
            for i, c in enumerate(self._cells)
        ]

    async def apply_edit(self, edit: NotebookEdit):
        self.edits.append(edit)
        new = [
            {
                "kind": d.kind,
                "content": d.content,
                "language": d.language,
                "metadata": dict(d.metadata),
                "order": None,
                "marker": None,
                "outputs": [],
            }
            for d in edit.cells
        ]
        if edit.kind is EditKind.INSERT:
            self._cells[edit.start:edit.start] = new
        else:
            self._cells[edit.start:edit.stop] = new
        self.dirty = True

    async def execute_range(self, start, stop):
        self.execute_calls.append((start, stop))
        if self.completion == "instant":
            self.complete(start, stop)
        elif isinstance(self.completion, int):
            self._pending = (start, stop)
            self._reads_until_done = self.completion

    def complete(self, start, stop):
        self._pending = None
        self._reads_until_done = None
        for index, cell in enumerate(self._cells):
            if start <= index < stop and cell["kind"] is CellKind.CODE and cell["content"].strip():
                n = next(self._counter)
                cell["order"] = n
                cell["marker"] = n
                cell["outputs"] = [CellOutput([OutputItem(STDOUT, f"ran: {cell['content']}".encode())])]

    async def save(self):
        self.saved += 1
        self.dirty = False

    @property
    def contents(self):
        return [c["content"] for c in self._cells]

    @property
    def raw_cells(self):
        return self._cells


class FakeProvider(NotebookProvider):
    def __init__(self, document=None):
        self.document = document
        self.opened = {}
        self.restarts = 0
        self.interrupts = 0
        self.kernel_running = True

    async def active_document(self):
        return self.document

    async def open_document(self, path):
        if path not in self.opened:
            raise NotebookToolError(
                f"Notebook file not found: {path}", code=ErrorCodes.NOTEBOOK_OPEN_FAILED, context={"path": path}
            )
        self.document = self.opened[path]
        return self.document

    async def restart_kernel(self):
        self.restarts += 1

    async def interrupt_kernel(self):
        if not self.kernel_running:
            return False
        self.interrupts += 1
        return True


@pytest.fixture
def settings():
    return GatewaySettings(_env_file=None)


@pytest.fixture
def document():
    return FakeNotebookDocument(
        cells=[
            markdown("# Title"),
            code("x = 1"),
            code("print(x)"),
            code("   "),
            markdown("Notes"),
        ],
        kernelspec={"name": "python3", "display_name": "Python 3", "language": "python"},
    )


@pytest.fixture
def provider(document):
    return FakeProvider(document)


@pytest.fixture
def fast_synchronizer(settings):
    def factory():
        return ExecutionSynchronizer(
            timeout_seconds=settings.TIMEOUT_SECONDS,
            max_output_size=settings.MAX_OUTPUT_SIZE,
            poll_interval=0,
            settle_delay=0,
        )

    return factory


@pytest.fixture
def ctx(provider, settings, fast_synchronizer):
    return ToolContext(provider=provider, settings=settings, synchronizer_factory=fast_synchronizer)


@pytest.fixture
def registry(ctx):
    return build_registry(ctx)


@pytest.fixture
def dispatcher(registry):
    return ProtocolDispatcher(registry)


@pytest.fixture
def call_tool(dispatcher):
    """Invoke a tool through the dispatcher; returns (text, is_error)."""
    ids = itertools.count(1)

    async def _call(name, arguments=None):
        message = {"jsonrpc": "2.0", "id": next(ids), "method": "tools/call", "params": {"name": name}}
        if arguments is not None:
            message["params"]["arguments"] = arguments
        response = await dispatcher.dispatch(message)
        result = response["result"]
        return result["content"][0]["text"], result.get("isError", False)

    return _call
