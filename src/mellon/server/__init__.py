from mellon.server.handler import (
    ConnectionHandler,
    ConnectionOutcome,
    HeaderScan,
    HttpResponse,
)
from mellon.server.listener import MellonServer, parse_hostport
from mellon.server.reload import watch_reload_signal

__all__ = [
    "ConnectionHandler",
    "ConnectionOutcome",
    "HeaderScan",
    "HttpResponse",
    "MellonServer",
    "parse_hostport",
    "watch_reload_signal",
]
