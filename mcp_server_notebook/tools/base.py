from dataclasses import dataclass
from typing import Callable, Optional

from mcp_server_notebook.config import GatewaySettings
from mcp_server_notebook.document import NotebookDocument, NotebookProvider
from mcp_server_notebook.errors import NoActiveNotebook
from mcp_server_notebook.synchronizer import ExecutionSynchronizer


@dataclass
class ToolContext:
    """What every tool handler needs: the provider and the current limits."""

    provider: NotebookProvider
    settings: GatewaySettings
    synchronizer_factory: Optional[Callable[[], ExecutionSynchronizer]] = None

    async def require_document(self, operation: str) -> NotebookDocument:
        document = await self.provider.active_document()
        if document is None:
            raise NoActiveNotebook(operation)
        return document

    def synchronizer(self) -> ExecutionSynchronizer:
        if self.synchronizer_factory is not None:
            return self.synchronizer_factory()
        return ExecutionSynchronizer(
            timeout_seconds=self.settings.TIMEOUT_SECONDS,
            max_output_size=self.settings.MAX_OUTPUT_SIZE,
        )

    async def execute(self, document: NotebookDocument, start: int, stop: int) -> str:
        outcome = await self.synchronizer().run(document, start, stop)
        return outcome.report
