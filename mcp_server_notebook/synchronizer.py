"""
Execution Synchronizer
======================

Runs a range of cells and decides when the kernel has finished.

The provider offers no completion callback, so completion is inferred by
polling: before the execute command is issued, the completion marker of
every target code cell is captured in a watch set; the range is done once
every watched marker has changed.

States: ISSUED -> POLLING -> COMPLETED | TIMED_OUT

- Blank code cells never receive a new marker, so they are left out of the
  watch set; a range of only blank cells completes on the first poll.
- Completion is recomputed from scratch on every poll.
- A timeout is not an error. The report is still produced from whatever
  state exists, prefixed by a warning.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from mcp_server_notebook.document import Cell, NotebookDocument
from mcp_server_notebook.formatting import format_execution_report, format_no_code_cells

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.2
SETTLE_DELAY_SECONDS = 0.5


class SyncState(str, Enum):
    ISSUED = "issued"
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class ExecutionOutcome:
    state: SyncState
    start: int
    stop: int
    code_cells: int
    watched: int
    elapsed: float
    report: str

    @property
    def completed(self) -> bool:
        return self.state in (SyncState.COMPLETED, SyncState.SKIPPED)


def snapshot_watch_set(cells: List[Cell]) -> Dict[int, Any]:
    """Capture the completion marker of every non-blank code cell, keyed by index."""
    return {cell.index: cell.completion_marker for cell in cells if cell.is_code and not cell.is_blank}


def all_markers_changed(watch_set: Dict[int, Any], live_cells: List[Cell]) -> bool:
    """True when every watched cell shows a marker different from its snapshot."""
    live = {cell.index: cell for cell in live_cells}
    for index, before in watch_set.items():
        cell = live.get(index)
        if cell is None:
            # Cell vanished under us; it can never report completion
            continue
        if cell.completion_marker == before:
            return False
    return True


def _code_cells_in_range(cells: List[Cell], start: int, stop: int) -> List[Cell]:
    return [cell for cell in cells if start <= cell.index < stop and cell.is_code]


class ExecutionSynchronizer:
    """Issue one execute command for a range and poll until it completes or times out."""

    def __init__(
        self,
        timeout_seconds: float = 30,
        max_output_size: int = 2000,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_output_size = max_output_size
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay
        self._clock = clock
        self._sleep = sleep or asyncio.sleep

    async def run(self, document: NotebookDocument, start: int, stop: int) -> ExecutionOutcome:
        cells = await document.get_cells()
        targets = _code_cells_in_range(cells, start, stop)

        if not targets:
            logger.info("execution_skipped_no_code_cells", start=start, stop=stop)
            return ExecutionOutcome(
                state=SyncState.SKIPPED,
                start=start,
                stop=stop,
                code_cells=0,
                watched=0,
                elapsed=0.0,
                report=format_no_code_cells(start, stop),
            )

        # ISSUED
        watch_set = snapshot_watch_set(targets)
        started = self._clock()
        state = SyncState.ISSUED
        logger.debug(
            "execution_issued",
            state=state.value,
            start=start,
            stop=stop,
            code_cells=len(targets),
            watched=len(watch_set),
        )
        await document.execute_range(start, stop)

        # POLLING
        state = SyncState.POLLING
        polls = 0
        while True:
            polls += 1
            live = await document.get_cells()
            if all_markers_changed(watch_set, live):
                state = SyncState.COMPLETED
                break
            if self._clock() - started >= self.timeout_seconds:
                state = SyncState.TIMED_OUT
                break
            await self._sleep(self.poll_interval)

        elapsed = self._clock() - started

        if state is SyncState.COMPLETED:
            # Let trailing output land before reading it
            await self._sleep(self.settle_delay)
            logger.info("execution_completed", start=start, stop=stop, polls=polls, elapsed=round(elapsed, 3))
        else:
            logger.warning(
                "execution_timed_out",
                start=start,
                stop=stop,
                polls=polls,
                timeout_seconds=self.timeout_seconds,
            )

        final_cells = _code_cells_in_range(await document.get_cells(), start, stop)
        report = format_execution_report(
            final_cells,
            start,
            stop,
            self.max_output_size,
            self.timeout_seconds,
            completed=state is SyncState.COMPLETED,
        )
        return ExecutionOutcome(
            state=state,
            start=start,
            stop=stop,
            code_cells=len(targets),
            watched=len(watch_set),
            elapsed=elapsed,
            report=report,
        )
