"""
Tests for the bounded request body reader.
"""

import pytest
from starlette.requests import ClientDisconnect

from mcp_server_notebook.body_reader import DEFAULT_MAX_BYTES, BoundedBodyReader
from mcp_server_notebook.errors import ClientClosedRequest, RequestStreamError, RequestTooLarge


async def _stream(*chunks, error=None):
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


class ExplodingAfter:
    """Chunk source that fails the test if consumed past the given count."""

    def __init__(self, chunks, limit):
        self.chunks = chunks
        self.limit = limit
        self.consumed = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.consumed >= len(self.chunks):
            raise StopAsyncIteration
        if self.consumed >= self.limit:
            raise AssertionError("read past the size limit")
        chunk = self.chunks[self.consumed]
        self.consumed += 1
        return chunk


async def test_default_limit_is_ten_mebibytes():
    assert BoundedBodyReader().max_bytes == DEFAULT_MAX_BYTES == 10 * 1024 * 1024


async def test_reads_complete_body():
    reader = BoundedBodyReader(max_bytes=100)
    assert await reader.read(_stream(b'{"a":', b"", b" 1}")) == b'{"a": 1}'


async def test_exactly_max_is_accepted():
    reader = BoundedBodyReader(max_bytes=10)
    assert await reader.read(_stream(b"12345", b"67890")) == b"1234567890"


async def test_max_plus_one_rejected_without_buffering():
    reader = BoundedBodyReader(max_bytes=10)
    source = ExplodingAfter([b"12345", b"678901", b"never read"], limit=2)
    with pytest.raises(RequestTooLarge) as exc:
        await reader.read(source)
    assert exc.value.received == 11
    assert exc.value.max_bytes == 10
    assert source.consumed == 2
    assert reader._chunks == []


async def test_declared_length_rejected_before_reading():
    reader = BoundedBodyReader(max_bytes=10)
    reader.check_declared_length("11")
    source = ExplodingAfter([b"x"], limit=0)
    with pytest.raises(RequestTooLarge):
        await reader.read(source)


async def test_garbage_content_length_ignored():
    reader = BoundedBodyReader(max_bytes=10)
    reader.check_declared_length("lots")
    assert await reader.read(_stream(b"ok")) == b"ok"


async def test_stream_error():
    reader = BoundedBodyReader(max_bytes=100)
    with pytest.raises(RequestStreamError):
        await reader.read(_stream(b"partial", error=ConnectionResetError("reset")))


async def test_client_disconnect():
    reader = BoundedBodyReader(max_bytes=100)
    with pytest.raises(ClientClosedRequest):
        await reader.read(_stream(b"partial", error=ClientDisconnect()))


async def test_settles_only_once():
    reader = BoundedBodyReader(max_bytes=4)
    reader.on_data(b"abc")
    reader.on_end()
    # late events after settlement are ignored
    reader.on_data(b"defgh")
    reader.on_error(RuntimeError("late"))
    reader.on_close()
    reader.on_end()
    assert reader.settled
    assert await reader.result == b"abc"


async def test_close_before_end():
    reader = BoundedBodyReader(max_bytes=4)
    reader.on_data(b"ab")
    reader.on_close()
    with pytest.raises(ClientClosedRequest):
        await reader.result
