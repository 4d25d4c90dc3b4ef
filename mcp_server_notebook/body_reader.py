"""
Bounded Body Reader
===================

Accumulates a request body chunk by chunk and enforces the size limit while
reading, so an oversized body is rejected without ever being buffered.

The reader settles exactly once: with the payload on a clean end, or with a
``RequestBodyError`` on overflow, stream error, or premature close. Events
that arrive after settlement are ignored.
"""

import asyncio
from typing import AsyncIterator, List, Optional

from starlette.requests import ClientDisconnect

from mcp_server_notebook.errors import (
    ClientClosedRequest,
    RequestBodyError,
    RequestStreamError,
    RequestTooLarge,
)
from mcp_server_notebook.observability import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class BoundedBodyReader:
    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES):
        self.max_bytes = max_bytes
        self.received = 0
        self._chunks: List[bytes] = []
        self._settled = False
        self._result: "asyncio.Future[bytes]" = asyncio.get_running_loop().create_future()

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def result(self) -> "asyncio.Future[bytes]":
        return self._result

    def _settle(self, payload: Optional[bytes] = None, error: Optional[RequestBodyError] = None) -> bool:
        if self._settled:
            return False
        self._settled = True
        self._chunks = []
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(payload)
        return True

    def on_data(self, chunk: bytes) -> None:
        if self._settled:
            logger.debug("body_chunk_after_settle", size=len(chunk))
            return
        self.received += len(chunk)
        if self.received > self.max_bytes:
            logger.warning("request_too_large", received=self.received, max_bytes=self.max_bytes)
            self._settle(error=RequestTooLarge(self.received, self.max_bytes))
            return
        self._chunks.append(chunk)

    def on_end(self) -> None:
        if self._settled:
            logger.debug("body_end_after_settle")
            return
        self._settle(payload=b"".join(self._chunks))

    def on_error(self, exc: BaseException) -> None:
        if self._settled:
            logger.debug("body_error_after_settle", error=str(exc))
            return
        logger.warning("request_stream_error", error=str(exc), received=self.received)
        self._settle(error=RequestStreamError(f"Request stream error: {exc}", context={"received": self.received}))

    def on_close(self) -> None:
        if self._settled:
            return
        logger.warning("request_closed_by_client", received=self.received)
        self._settle(error=ClientClosedRequest(self.received))

    def check_declared_length(self, content_length: Optional[str]) -> None:
        """Reject up front when the declared Content-Length already exceeds the limit."""
        if content_length is None:
            return
        try:
            declared = int(content_length)
        except ValueError:
            return
        if declared > self.max_bytes:
            logger.warning("request_too_large", declared=declared, max_bytes=self.max_bytes)
            self._settle(error=RequestTooLarge(declared, self.max_bytes))

    async def read(self, stream: AsyncIterator[bytes]) -> bytes:
        """
        Drive the reader from an async chunk iterator (``Request.stream()``).

        Raises:
            RequestTooLarge: body exceeds ``max_bytes``
            RequestStreamError: the stream raised
            ClientClosedRequest: the client disconnected before the end
        """
        if not self._settled:
            try:
                async for chunk in stream:
                    if chunk:
                        self.on_data(chunk)
                    if self._settled:
                        break
                else:
                    self.on_end()
            except ClientDisconnect:
                self.on_close()
            except Exception as e:
                self.on_error(e)
        return await self._result
