"""
Live reload of the token store on ``SIGHUP``, shared by both front ends.
"""

import logging
import signal

import anyio
from anyio import to_thread
from anyio.abc import TaskStatus

from mellon.errors import MellonError
from mellon.tokens import TokenStore

logger = logging.getLogger(__name__)


def can_reload_on_sighup() -> bool:
    return hasattr(signal, "SIGHUP")


async def watch_reload_signal(
    token_store: TokenStore, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED
) -> None:
    """
    Re-read ``token_store`` from disk each time the process gets ``SIGHUP``.

    Runs until cancelled. The handler is installed before ``task_status`` is
    reported, so a signal sent after ``tg.start`` returns is never lost. A
    failed reload is logged and the previously loaded tokens stay in place.
    """
    with anyio.open_signal_receiver(signal.SIGHUP) as signals:
        task_status.started()
        async for _ in signals:
            logger.info("Received SIGHUP, reloading token store")
            try:
                await to_thread.run_sync(token_store.reload)
            except MellonError as e:
                logger.error(f"Failed to reload token store, keeping previous tokens: {e}")
            else:
                logger.info(f"Token store reloaded ({len(token_store)} tokens)")
