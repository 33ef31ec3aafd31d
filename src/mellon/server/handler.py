"""
Per-connection request handling for the raw auth server.

A connection is read line by line until an ``Authorization: Bearer`` header
or the blank line ending the headers is seen, then answered with a bare
status line and closed. Request method, path and body are never looked at.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import anyio
from anyio.abc import ByteStream
from anyio.streams.buffered import BufferedByteReceiveStream

from mellon.errors import MellonError
from mellon.tokens import TokenStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Authorization: Bearer "

DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_MAX_LINE_LENGTH = 8192


class HttpResponse(Enum):
    OK = b"HTTP/1.1 200 OK\r\n\r\n"
    UNAUTHORISED = b"HTTP/1.1 401 UNAUTHORISED\r\n\r\n"


class HeaderScan(str, Enum):
    """How the header-scanning phase of a connection ended."""

    TOKEN_FOUND = "token_found"
    HEADERS_EXHAUSTED = "headers_exhausted"
    READ_TIMED_OUT = "read_timed_out"
    READ_ERROR = "read_error"


@dataclass(frozen=True)
class ConnectionOutcome:
    scan: HeaderScan
    response: HttpResponse
    # False when the response could not be written
    delivered: bool

    @property
    def granted(self) -> bool:
        return self.response is HttpResponse.OK


@dataclass
class ConnectionHandler:
    """
    Answers a single connection with 200 or 401 based on its bearer token.

    Failures are contained here; calling the handler never raises for
    anything the client does.
    """

    store: TokenStore
    read_timeout: float = DEFAULT_READ_TIMEOUT
    write_timeout: float = DEFAULT_WRITE_TIMEOUT
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH

    async def __call__(self, stream: ByteStream) -> ConnectionOutcome:
        async with stream:
            scan, candidate = await self.extract_auth_token(stream)
            response = self.authorize(scan, candidate)
            delivered = await self.respond(stream, response)
        return ConnectionOutcome(scan=scan, response=response, delivered=delivered)

    async def extract_auth_token(
        self, stream: ByteStream
    ) -> tuple[HeaderScan, str | None]:
        """
        Scan header lines for a bearer credential.

        A single deadline of ``read_timeout`` seconds covers the whole scan.

        Returns:
            The way the scan ended and, for ``TOKEN_FOUND``, the candidate secret
        """
        reader = BufferedByteReceiveStream(stream)
        try:
            with anyio.fail_after(self.read_timeout):
                while True:
                    try:
                        raw = await reader.receive_until(b"\n", self.max_line_length)
                    except anyio.IncompleteRead:
                        # Peer closed its side; the unterminated tail is the last line
                        tail = reader.buffer
                        if tail:
                            candidate = _match_bearer(_decode_line(tail))
                            if candidate is not None:
                                return HeaderScan.TOKEN_FOUND, candidate
                        return HeaderScan.HEADERS_EXHAUSTED, None

                    line = _decode_line(raw)
                    candidate = _match_bearer(line)
                    if candidate is not None:
                        return HeaderScan.TOKEN_FOUND, candidate
                    if not line:
                        return HeaderScan.HEADERS_EXHAUSTED, None
        except TimeoutError:
            logger.debug("Connection timed out while reading headers")
            return HeaderScan.READ_TIMED_OUT, None
        except anyio.DelimiterNotFound:
            logger.warning(
                f"Header line exceeded {self.max_line_length} bytes, dropping request"
            )
            return HeaderScan.READ_ERROR, None
        except UnicodeDecodeError:
            logger.warning("Header line is not valid UTF-8, dropping request")
            return HeaderScan.READ_ERROR, None
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            logger.warning(f"Error reading request headers: {e!r}")
            return HeaderScan.READ_ERROR, None

    def authorize(self, scan: HeaderScan, candidate: str | None) -> HttpResponse:
        # No credential means the request cannot be authorized
        if scan is not HeaderScan.TOKEN_FOUND or candidate is None:
            return HttpResponse.UNAUTHORISED
        try:
            valid = self.store.contains_token(candidate)
        except MellonError:
            logger.exception("Token store check failed")
            return HttpResponse.UNAUTHORISED
        return HttpResponse.OK if valid else HttpResponse.UNAUTHORISED

    async def respond(self, stream: ByteStream, response: HttpResponse) -> bool:
        try:
            with anyio.fail_after(self.write_timeout):
                await stream.send(response.value)
        except TimeoutError:
            logger.warning("Connection timed out while writing response")
            return False
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            logger.warning(f"Failed to write response: {e!r}")
            return False
        return True


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8").rstrip("\r")


def _match_bearer(line: str) -> str | None:
    if line.startswith(BEARER_PREFIX):
        return line[len(BEARER_PREFIX) :]
    return None
