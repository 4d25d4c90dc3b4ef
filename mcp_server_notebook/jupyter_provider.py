"""
Jupyter-backed document provider.

Notebooks are read and written with nbformat; code runs on a Jupyter kernel
driven through jupyter_client's ``AsyncKernelManager``. One kernel per
notebook, started on first use.

Execution is fire-and-forget from the gateway's point of view: cells run in
a background task, and each finished cell gets a fresh completion marker,
which is what the execution synchronizer polls for.
"""

import asyncio
import base64
import copy
import itertools
import json
import os
import queue
import tempfile
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import nbformat
import structlog
from jupyter_client.manager import AsyncKernelManager

from mcp_server_notebook.document import (
    DEFAULT_LANGUAGE,
    MARKDOWN_LANGUAGE,
    Cell,
    CellData,
    CellKind,
    CellOutput,
    EditKind,
    NotebookDocument,
    NotebookEdit,
    NotebookProvider,
    OutputItem,
)
from mcp_server_notebook.errors import ErrorCodes, KernelError, NotebookToolError

logger = structlog.get_logger(__name__)

STDOUT_MIME = "application/vnd.code.notebook.stdout"
STDERR_MIME = "application/vnd.code.notebook.stderr"

KERNEL_READY_TIMEOUT = 120
IOPUB_POLL_SECONDS = 1.0


class KernelSession:
    """One Jupyter kernel plus its client channels."""

    def __init__(self, kernel_name: str = "python3", cwd: Optional[str] = None):
        self.kernel_name = kernel_name
        self.cwd = cwd
        self.km: Optional[AsyncKernelManager] = None
        self.kc = None
        # Bumped on every restart so an in-flight execution stops waiting
        self._generation = 0

    @property
    def started(self) -> bool:
        return self.km is not None

    async def start(self):
        km = AsyncKernelManager(kernel_name=self.kernel_name)
        await km.start_kernel(cwd=self.cwd)
        kc = km.client()
        kc.start_channels()
        try:
            await kc.wait_for_ready(timeout=KERNEL_READY_TIMEOUT)
        except RuntimeError as e:
            kc.stop_channels()
            await km.shutdown_kernel(now=True)
            raise KernelError(f"Kernel did not become ready: {e}", context={"kernelName": self.kernel_name}) from e
        self.km, self.kc = km, kc
        logger.info("kernel_started", kernel_name=self.kernel_name, cwd=self.cwd)

    async def execute(self, code: str) -> Tuple[Optional[int], List[Dict[str, Any]]]:
        """Run code and collect its nbformat outputs. Returns (execution_count, outputs)."""
        generation = self._generation
        msg_id = self.kc.execute(code)
        execution_count = None
        outputs = []

        while True:
            if generation != self._generation:
                logger.warning("execution_abandoned_by_restart", msg_id=msg_id)
                break
            try:
                msg = await self.kc.get_iopub_msg(timeout=IOPUB_POLL_SECONDS)
            except queue.Empty:
                if not await self.km.is_alive():
                    logger.warning("kernel_died_during_execution", msg_id=msg_id)
                    break
                continue

            if msg.get("parent_header", {}).get("msg_id") != msg_id:
                continue

            msg_type = msg["msg_type"]
            content = msg["content"]
            if msg_type == "status" and content.get("execution_state") == "idle":
                break
            if msg_type == "execute_input":
                execution_count = content.get("execution_count")
            elif msg_type == "clear_output":
                outputs = []
            else:
                output = create_output(msg_type, content)
                if output is not None:
                    outputs.append(output)
                    if msg_type == "execute_result":
                        execution_count = content.get("execution_count", execution_count)

        return execution_count, outputs

    async def interrupt(self):
        await self.km.interrupt_kernel()
        logger.info("kernel_interrupted", kernel_name=self.kernel_name)

    async def restart(self):
        self._generation += 1
        await self.km.restart_kernel()
        logger.info("kernel_restarted", kernel_name=self.kernel_name)

    async def shutdown(self):
        if self.km is None:
            return
        try:
            self.kc.stop_channels()
            await self.km.shutdown_kernel(now=True)
        finally:
            self.km, self.kc = None, None
        logger.info("kernel_stopped", kernel_name=self.kernel_name)


def create_output(msg_type: str, content: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Build an nbformat output node from an IOPub message."""
    if msg_type == "stream":
        return nbformat.v4.new_output("stream", name=content["name"], text=content["text"])
    elif msg_type == "display_data":
        return nbformat.v4.new_output("display_data", data=content["data"], metadata=content.get("metadata", {}))
    elif msg_type == "execute_result":
        return nbformat.v4.new_output(
            "execute_result",
            data=content["data"],
            metadata=content.get("metadata", {}),
            execution_count=content.get("execution_count"),
        )
    elif msg_type == "error":
        return nbformat.v4.new_output(
            "error",
            ename=content["ename"],
            evalue=content["evalue"],
            traceback=content["traceback"],
        )
    return None


def _join_text(value) -> str:
    if isinstance(value, list):
        return "".join(value)
    return value


def _mime_bytes(mime: str, value: Any) -> bytes:
    is_text = isinstance(value, str) or (isinstance(value, list) and all(isinstance(v, str) for v in value))
    if not is_text:
        return json.dumps(value).encode("utf-8")
    text = _join_text(value)
    if mime.startswith("image/") and not mime.startswith("image/svg"):
        try:
            return base64.b64decode(text)
        except ValueError:
            return text.encode("utf-8")
    return text.encode("utf-8")


def convert_output(output: Dict[str, Any]) -> CellOutput:
    """Map an nbformat output to MIME-tagged items."""
    output_type = output.get("output_type")
    if output_type == "stream":
        mime = STDERR_MIME if output.get("name") == "stderr" else STDOUT_MIME
        return CellOutput([OutputItem(mime, _join_text(output.get("text", "")).encode("utf-8"))])
    if output_type == "error":
        text = f"{output.get('ename')}: {output.get('evalue')}\n" + "\n".join(output.get("traceback", []))
        return CellOutput([OutputItem(STDERR_MIME, text.encode("utf-8"))])
    data = output.get("data", {})
    return CellOutput([OutputItem(mime, _mime_bytes(mime, value)) for mime, value in data.items()])


def _failure_output(error: BaseException) -> Dict[str, Any]:
    """Error output recorded on a cell the kernel could not run."""
    return nbformat.v4.new_output("error", ename=type(error).__name__, evalue=str(error), traceback=[])


def _write_atomic(nb, path: Path):
    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            nbformat.write(nb, f)
        os.replace(temp_path, str(path))
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def _new_cell_id() -> str:
    return uuid.uuid4().hex[:8]


class JupyterNotebookDocument(NotebookDocument):
    def __init__(self, path: Path, nb, kernel_factory: Callable[[], Any]):
        self.path = path
        self.nb = nb
        self._kernel_factory = kernel_factory
        self.kernel = None
        self._dirty = False
        self._markers: Dict[str, int] = {}
        self._marker_seq = itertools.count(1)
        self._run_lock = asyncio.Lock()
        self._kernel_lock = asyncio.Lock()
        self._tasks = set()
        self._ensure_cell_ids()

    def _ensure_cell_ids(self):
        if self.nb.nbformat_minor < 5:
            self.nb.nbformat_minor = 5
        for cell in self.nb.cells:
            if not cell.get("id"):
                cell["id"] = _new_cell_id()

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def kernelspec(self) -> Optional[Dict[str, Any]]:
        spec = self.nb.metadata.get("kernelspec")
        return dict(spec) if spec else None

    @property
    def default_language(self) -> str:
        info = self.nb.metadata.get("language_info") or {}
        spec = self.nb.metadata.get("kernelspec") or {}
        return info.get("name") or spec.get("language") or DEFAULT_LANGUAGE

    def _language_of(self, cell) -> str:
        if cell.cell_type == "markdown":
            return MARKDOWN_LANGUAGE
        if cell.cell_type == "raw":
            return "raw"
        return cell.metadata.get("vscode", {}).get("languageId") or self.default_language

    def _snapshot(self, index: int, cell) -> Cell:
        is_code = cell.cell_type == "code"
        return Cell(
            index=index,
            kind=CellKind.from_cell_type(cell.cell_type),
            content=_join_text(cell.source),
            language=self._language_of(cell),
            execution_order=cell.get("execution_count") if is_code else None,
            completion_marker=self._markers.get(cell.id),
            outputs=[convert_output(o) for o in cell.get("outputs", [])] if is_code else [],
            metadata=copy.deepcopy(dict(cell.metadata)),
        )

    async def cell_count(self) -> int:
        return len(self.nb.cells)

    async def get_cells(self) -> List[Cell]:
        return [self._snapshot(i, cell) for i, cell in enumerate(self.nb.cells)]

    def _new_node(self, data: CellData):
        metadata = copy.deepcopy(data.metadata)
        if data.kind is CellKind.MARKUP:
            node = nbformat.v4.new_markdown_cell(source=data.content, metadata=metadata)
        else:
            node = nbformat.v4.new_code_cell(source=data.content, metadata=metadata)
            if data.language != self.default_language:
                node.metadata.setdefault("vscode", {})["languageId"] = data.language
            elif "vscode" in node.metadata:
                node.metadata["vscode"].pop("languageId", None)
        if not node.get("id"):
            node["id"] = _new_cell_id()
        return node

    async def apply_edit(self, edit: NotebookEdit) -> None:
        nodes = [self._new_node(data) for data in edit.cells]
        if edit.kind is EditKind.INSERT:
            self.nb.cells[edit.start:edit.start] = nodes
        else:
            for cell in self.nb.cells[edit.start:edit.stop]:
                self._markers.pop(cell.id, None)
            self.nb.cells[edit.start:edit.stop] = nodes
        self._dirty = True
        logger.debug("notebook_edit_applied", kind=edit.kind.value, start=edit.start, stop=edit.stop, cells=len(nodes))

    async def execute_range(self, start: int, stop: int) -> None:
        """
        Queue the code cells in ``[start, stop)`` on the kernel.

        The kernel is started here, before anything is queued, so a kernel
        that cannot start raises ``KernelError`` to the caller.
        """
        cells = [cell for cell in self.nb.cells[start:stop] if cell.cell_type == "code"]
        if any(_join_text(cell.source).strip() for cell in cells):
            await self.ensure_kernel()
        task = asyncio.create_task(self._run_cells([cell.id for cell in cells]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_cells(self, cell_ids: List[str]):
        async with self._run_lock:
            for cell_id in cell_ids:
                cell = self._find_cell(cell_id)
                if cell is None or not _join_text(cell.source).strip():
                    continue
                try:
                    kernel = await self.ensure_kernel()
                    count, outputs = await kernel.execute(_join_text(cell.source))
                except Exception as e:
                    logger.error("cell_execution_failed", uri=self.uri, cell_id=cell_id, error=str(e), exc_info=True)
                    count, outputs = None, [_failure_output(e)]
                cell.execution_count = count
                cell.outputs = outputs
                self._markers[cell_id] = next(self._marker_seq)
                self._dirty = True

    def _find_cell(self, cell_id: str):
        for cell in self.nb.cells:
            if cell.id == cell_id:
                return cell
        return None

    async def ensure_kernel(self):
        async with self._kernel_lock:
            if self.kernel is None:
                kernel = self._kernel_factory()
                try:
                    await kernel.start()
                except KernelError:
                    raise
                except Exception as e:
                    raise KernelError(f"Failed to start kernel: {e}", context={"uri": self.uri}) from e
                self.kernel = kernel
        return self.kernel

    async def save(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write_atomic, self.nb, self.path)
        self._dirty = False

    async def close(self):
        for task in list(self._tasks):
            task.cancel()
        if self.kernel is not None:
            await self.kernel.shutdown()
            self.kernel = None


class JupyterNotebookProvider(NotebookProvider):
    """
    Provider over local .ipynb files. Relative paths resolve against the
    workspace root (or the current directory when none is configured).
    """

    def __init__(self, workspace_root: Optional[str] = None, kernel_name: str = "python3", kernel_factory=None):
        self.workspace_root = Path(workspace_root).resolve() if workspace_root else None
        self.kernel_name = kernel_name
        self._kernel_factory = kernel_factory or KernelSession
        self._documents: Dict[Path, JupyterNotebookDocument] = {}
        self._active: Optional[JupyterNotebookDocument] = None

    def resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = (self.workspace_root or Path.cwd()) / candidate
        return candidate.resolve()

    async def active_document(self) -> Optional[JupyterNotebookDocument]:
        return self._active

    async def open_document(self, path: str) -> JupyterNotebookDocument:
        resolved = self.resolve(path)
        document = self._documents.get(resolved)
        if document is None:
            if not resolved.is_file():
                raise NotebookToolError(
                    f"Notebook file not found: {resolved}",
                    code=ErrorCodes.NOTEBOOK_OPEN_FAILED,
                    context={"path": path},
                )
            loop = asyncio.get_running_loop()
            try:
                nb = await loop.run_in_executor(None, lambda: nbformat.read(str(resolved), as_version=4))
            except Exception as e:
                raise NotebookToolError(
                    f"Failed to open notebook: {e}",
                    code=ErrorCodes.NOTEBOOK_OPEN_FAILED,
                    context={"path": path},
                ) from e
            cwd = str(resolved.parent)
            document = JupyterNotebookDocument(
                resolved, nb, lambda: self._kernel_factory(kernel_name=self.kernel_name, cwd=cwd)
            )
            self._documents[resolved] = document
        self._active = document
        logger.info("notebook_opened", path=str(resolved), cells=len(document.nb.cells))
        return document

    async def restart_kernel(self) -> None:
        if self._active is None:
            return
        if self._active.kernel is None:
            await self._active.ensure_kernel()
            return
        await self._active.kernel.restart()

    async def interrupt_kernel(self) -> bool:
        if self._active is None or self._active.kernel is None:
            return False
        await self._active.kernel.interrupt()
        return True

    async def shutdown(self):
        for document in self._documents.values():
            try:
                await document.close()
            except Exception as e:
                logger.warning("kernel_shutdown_failed", uri=document.uri, error=str(e))
        self._documents.clear()
        self._active = None
