"""
Starlette front end for the token store.

Exposes a single ``/auth`` endpoint answering 200 or 401 with the same
header rule as the raw listener. Usage:
    mellon serve --http localhost:8090
"""

import logging

import anyio
import uvicorn
from starlette.applications import Starlette
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    SimpleUser,
)
from starlette.middleware import Middleware
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response
from starlette.routing import Route

from mellon.errors import ErrorResponse, MellonError
from mellon.server.json_response import UnauthorizedResponse
from mellon.server.reload import can_reload_on_sighup, watch_reload_signal
from mellon.tokens import TokenStore

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth"
BEARER_SCHEME = "Bearer "

AUTH_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE", "CONNECT"]


class BearerTokenBackend(AuthenticationBackend):
    """
    Authentication backend that checks bearer tokens against a ``TokenStore``.

    The scheme prefix is matched exactly, like the raw listener does.
    """

    def __init__(self, token_store: TokenStore):
        self.token_store = token_store

    async def authenticate(self, conn: HTTPConnection):
        auth_header = conn.headers.get("authorization")
        if not auth_header or not auth_header.startswith(BEARER_SCHEME):
            return None

        secret = auth_header[len(BEARER_SCHEME) :]
        try:
            if not self.token_store.contains_token(secret):
                return None
        except MellonError:
            logger.exception("Token store check failed")
            return None

        return AuthCredentials(["authenticated"]), SimpleUser("bearer")


async def authorize(request: Request) -> Response:
    if request.user.is_authenticated:
        return Response(status_code=200)
    return UnauthorizedResponse(
        ErrorResponse(
            error="unauthorized",
            error_description="Invalid or missing token",
        )
    )


def create_app(token_store: TokenStore) -> Starlette:
    """
    Create the Starlette application.

    Args:
        token_store: Store consulted for every request

    Returns:
        Starlette app serving ``/auth``
    """
    return Starlette(
        routes=[Route(AUTH_PATH, endpoint=authorize, methods=AUTH_METHODS)],
        middleware=[
            Middleware(
                AuthenticationMiddleware, backend=BearerTokenBackend(token_store)
            )
        ],
    )


def create_http_server(
    token_store: TokenStore, host: str, port: int, log_level: str = "info"
) -> uvicorn.Server:
    app = create_app(token_store)
    return uvicorn.Server(
        config=uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    )


async def serve_http(
    server: uvicorn.Server, token_store: TokenStore, *, reload_on_sighup: bool = True
) -> None:
    """
    Run ``server`` until it exits, reloading ``token_store`` on ``SIGHUP``.

    uvicorn only traps SIGINT and SIGTERM, so the reload watcher runs beside it
    in the same event loop and is cancelled once the server stops.
    """
    async with anyio.create_task_group() as tg:
        if reload_on_sighup and can_reload_on_sighup():
            await tg.start(watch_reload_signal, token_store)
        await server.serve()
        tg.cancel_scope.cancel()


def run_http(
    token_store: TokenStore, host: str, port: int, log_level: str = "info"
) -> None:
    """Serve the Starlette app with uvicorn until interrupted."""
    server = create_http_server(token_store, host, port, log_level)
    anyio.run(serve_http, server, token_store)
