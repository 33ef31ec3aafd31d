"""
TCP listener for the raw auth server.

Usage:
    server = MellonServer(TokenStore(path), "localhost:8090")
    server.run()
"""

import logging

import anyio
from anyio.abc import SocketListener, SocketStream, TaskGroup, TaskStatus

from mellon.server.handler import (
    DEFAULT_MAX_LINE_LENGTH,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    ConnectionHandler,
)
from mellon.server.reload import can_reload_on_sighup, watch_reload_signal
from mellon.settings import MellonSettings
from mellon.tokens import TokenStore

logger = logging.getLogger(__name__)


def parse_hostport(hostport: str) -> tuple[str, int]:
    """
    Split ``host:port`` into its parts.

    IPv6 hosts may be given in brackets, e.g. ``[::1]:8090``.

    Raises:
        ValueError: If the port is missing or not a valid port number
    """
    host, sep, port_text = hostport.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Expected HOST:PORT, got {hostport!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in {hostport!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in {hostport!r}")
    return host, port


class MellonServer:
    """
    Accepts connections forever and answers each one in its own task.

    The token store is only read while serving. When ``reload_on_sighup`` is
    set, a ``SIGHUP`` makes the server re-read the store's backing file.
    """

    def __init__(
        self,
        token_store: TokenStore,
        host_name: str,
        *,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
        reload_on_sighup: bool = True,
    ):
        self.token_store = token_store
        self.host_name = host_name
        self.handler = ConnectionHandler(
            token_store,
            read_timeout=read_timeout,
            write_timeout=write_timeout,
            max_line_length=max_line_length,
        )
        self.reload_on_sighup = reload_on_sighup and can_reload_on_sighup()

    @classmethod
    def from_settings(
        cls, token_store: TokenStore, settings: MellonSettings, host_name: str | None = None
    ) -> "MellonServer":
        return cls(
            token_store,
            host_name or settings.host,
            read_timeout=settings.read_timeout,
            write_timeout=settings.write_timeout,
            max_line_length=settings.max_line_length,
        )

    def run(self) -> None:
        """Serve until the process is terminated."""
        anyio.run(self.serve)

    async def serve(
        self, *, task_status: TaskStatus[list[SocketListener]] = anyio.TASK_STATUS_IGNORED
    ) -> None:
        """
        Bind ``host_name`` and serve connections.

        Reports the bound listeners through ``task_status`` once accepting.

        Raises:
            ValueError: If ``host_name`` is not a valid ``host:port``
            OSError: If the address cannot be bound
        """
        host, port = parse_hostport(self.host_name)
        try:
            multi_listener = await anyio.create_tcp_listener(
                local_host=host, local_port=port
            )
        except OSError as e:
            logger.error(f"Failed to bind to {self.host_name}: {e}")
            raise

        async with multi_listener, anyio.create_task_group() as tg:
            if self.reload_on_sighup:
                await tg.start(watch_reload_signal, self.token_store)
            for listener in multi_listener.listeners:
                tg.start_soon(self._accept_loop, listener, tg)
            logger.info(f"Listening on {self.host_name}")
            task_status.started(list(multi_listener.listeners))

    async def _accept_loop(self, listener: SocketListener, tg: TaskGroup) -> None:
        while True:
            try:
                stream = await listener.accept()
            except anyio.ClosedResourceError:
                return
            except OSError:
                logger.exception("Error accepting connection")
                continue
            tg.start_soon(self._serve_connection, stream)

    async def _serve_connection(self, stream: SocketStream) -> None:
        try:
            outcome = await self.handler(stream)
        except Exception:
            logger.exception("Failed to serve request")
            return
        logger.debug(
            f"Connection finished: scan={outcome.scan.value} "
            f"granted={outcome.granted} delivered={outcome.delivered}"
        )

