"""
Tests for the per-connection handler.
"""

from pathlib import Path
from unittest.mock import MagicMock

import anyio
import pytest
from anyio.abc import ByteStream

from mellon.errors import StoreNotLoadedError
from mellon.server.handler import (
    ConnectionHandler,
    HeaderScan,
    HttpResponse,
)
from mellon.tokens import TokenStore

pytestmark = pytest.mark.anyio

SECRET = "11111111-1111-1111-1111-111111111111"


class FakeStream(ByteStream):
    """Byte stream replaying canned chunks and recording what is sent."""

    def __init__(
        self,
        chunks: list[bytes],
        *,
        hang: bool = False,
        receive_error: Exception | None = None,
        send_error: Exception | None = None,
    ):
        self.chunks = list(chunks)
        self.hang = hang
        self.receive_error = receive_error
        self.send_error = send_error
        self.sent: list[bytes] = []
        self.closed = False

    async def receive(self, max_bytes: int = 65536) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        if self.receive_error is not None:
            raise self.receive_error
        if self.hang:
            await anyio.sleep_forever()
        raise anyio.EndOfStream

    async def send(self, item: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(item)

    async def send_eof(self) -> None:
        pass

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def store(tmp_path: Path) -> TokenStore:
    path = tmp_path / "tokens"
    path.write_text(f"svc-a:{SECRET}\n", encoding="utf-8")
    return TokenStore(path)


@pytest.fixture
def handler(store: TokenStore) -> ConnectionHandler:
    return ConnectionHandler(store, read_timeout=1, write_timeout=1)


def request(*headers: str) -> bytes:
    lines = ["GET /auth HTTP/1.1", "Host: localhost", *headers, "", ""]
    return "\r\n".join(lines).encode("utf-8")


class TestAuthorization:
    async def test_valid_token_is_granted(self, handler: ConnectionHandler):
        stream = FakeStream([request(f"Authorization: Bearer {SECRET}")])
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.TOKEN_FOUND
        assert outcome.granted
        assert outcome.delivered
        assert stream.sent == [b"HTTP/1.1 200 OK\r\n\r\n"]
        assert stream.closed

    async def test_invalid_token_is_unauthorised(self, handler: ConnectionHandler):
        stream = FakeStream([request("Authorization: Bearer nope")])
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.TOKEN_FOUND
        assert not outcome.granted
        assert stream.sent == [b"HTTP/1.1 401 UNAUTHORISED\r\n\r\n"]
        assert stream.closed

    async def test_missing_header_skips_store(self):
        store = MagicMock(spec=TokenStore)
        handler = ConnectionHandler(store, read_timeout=1)
        stream = FakeStream([request("Accept: */*")])

        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.HEADERS_EXHAUSTED
        assert outcome.response is HttpResponse.UNAUTHORISED
        store.contains_token.assert_not_called()

    async def test_header_match_is_case_sensitive(self, handler: ConnectionHandler):
        stream = FakeStream([request(f"authorization: bearer {SECRET}")])
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.HEADERS_EXHAUSTED
        assert not outcome.granted

    async def test_header_after_blank_line_is_ignored(self, handler: ConnectionHandler):
        payload = request() + f"Authorization: Bearer {SECRET}\r\n".encode("utf-8")
        outcome = await handler(FakeStream([payload]))

        assert outcome.scan is HeaderScan.HEADERS_EXHAUSTED
        assert not outcome.granted

    async def test_empty_bearer_matches_stored_empty_secret(self, tmp_path: Path):
        path = tmp_path / "tokens"
        path.write_text("svc-empty:\n", encoding="utf-8")
        handler = ConnectionHandler(TokenStore(path), read_timeout=1)

        outcome = await handler(FakeStream([request("Authorization: Bearer ")]))
        assert outcome.granted

    async def test_empty_bearer_without_empty_secret_is_unauthorised(
        self, handler: ConnectionHandler
    ):
        outcome = await handler(FakeStream([request("Authorization: Bearer ")]))

        assert outcome.scan is HeaderScan.TOKEN_FOUND
        assert not outcome.granted

    async def test_store_failure_is_unauthorised(self):
        store = MagicMock(spec=TokenStore)
        store.contains_token.side_effect = StoreNotLoadedError("Token store not loaded!")
        handler = ConnectionHandler(store, read_timeout=1)
        stream = FakeStream([request(f"Authorization: Bearer {SECRET}")])

        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.TOKEN_FOUND
        assert outcome.response is HttpResponse.UNAUTHORISED
        assert stream.sent == [HttpResponse.UNAUTHORISED.value]


class TestHeaderScanning:
    async def test_headers_split_across_chunks(self, handler: ConnectionHandler):
        payload = request(f"Authorization: Bearer {SECRET}")
        chunks = [payload[i : i + 7] for i in range(0, len(payload), 7)]
        outcome = await handler(FakeStream(chunks))
        assert outcome.granted

    async def test_bare_newlines_are_accepted(self, handler: ConnectionHandler):
        payload = f"GET / HTTP/1.1\nAuthorization: Bearer {SECRET}\n\n".encode("utf-8")
        outcome = await handler(FakeStream([payload]))
        assert outcome.granted

    async def test_end_of_stream_exhausts_headers(self, handler: ConnectionHandler):
        stream = FakeStream([b"GET / HTTP/1.1\r\nHost: x\r\n"])
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.HEADERS_EXHAUSTED
        assert stream.sent == [HttpResponse.UNAUTHORISED.value]

    async def test_unterminated_final_line_is_scanned(self, handler: ConnectionHandler):
        stream = FakeStream([f"Authorization: Bearer {SECRET}".encode("utf-8")])
        outcome = await handler(stream)
        assert outcome.granted

    async def test_empty_connection_is_unauthorised(self, handler: ConnectionHandler):
        stream = FakeStream([])
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.HEADERS_EXHAUSTED
        assert stream.sent == [HttpResponse.UNAUTHORISED.value]

    async def test_read_timeout_is_unauthorised(self, store: TokenStore):
        handler = ConnectionHandler(store, read_timeout=0.1)
        stream = FakeStream([b"GET / HTTP/1.1\r\n"], hang=True)

        with anyio.fail_after(5):
            outcome = await handler(stream)

        assert outcome.scan is HeaderScan.READ_TIMED_OUT
        assert stream.sent == [HttpResponse.UNAUTHORISED.value]
        assert stream.closed

    async def test_read_error_is_unauthorised(self, handler: ConnectionHandler):
        stream = FakeStream(
            [b"GET / HTTP/1.1\r\n"], receive_error=anyio.BrokenResourceError()
        )
        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.READ_ERROR
        assert stream.sent == [HttpResponse.UNAUTHORISED.value]

    async def test_overlong_line_is_read_error(self, store: TokenStore):
        handler = ConnectionHandler(store, read_timeout=1, max_line_length=64)
        stream = FakeStream([b"X-Padding: " + b"a" * 200], hang=True)

        outcome = await handler(stream)

        assert outcome.scan is HeaderScan.READ_ERROR
        assert not outcome.granted

    async def test_invalid_utf8_is_read_error(self, handler: ConnectionHandler):
        stream = FakeStream([b"X-Junk: \xff\xfe\r\n\r\n"])
        outcome = await handler(stream)
        assert outcome.scan is HeaderScan.READ_ERROR


class TestResponding:
    async def test_write_failure_is_contained(self, handler: ConnectionHandler):
        stream = FakeStream(
            [request(f"Authorization: Bearer {SECRET}")],
            send_error=anyio.BrokenResourceError(),
        )
        outcome = await handler(stream)

        assert outcome.granted
        assert not outcome.delivered
        assert stream.closed

    async def test_write_timeout_is_contained(self, store: TokenStore):
        class StalledStream(FakeStream):
            async def send(self, item: bytes) -> None:
                await anyio.sleep_forever()

        handler = ConnectionHandler(store, read_timeout=1, write_timeout=0.1)
        stream = StalledStream([request(f"Authorization: Bearer {SECRET}")])

        with anyio.fail_after(5):
            outcome = await handler(stream)

        assert not outcome.delivered
        assert stream.closed
