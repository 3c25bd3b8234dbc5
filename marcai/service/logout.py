from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from marcai.logging import get_logger
from marcai.service.messages import forced_logout_message
from marcai.service.notifications import NotificationChannel
from marcai.storage.errors import TokenStoreError
from marcai.storage.token_store import TokenStore

logger = get_logger(__name__)

Redirect = Callable[[str], Union[Awaitable[Any], Any]]


def _log_redirect(path: str) -> None:
    logger.info("redirect_to_login", path=path)


class ForcedLogout:
    """Warns the user, waits out the grace window, then ends the session.

    Once started, the countdown runs to completion: a login performed during
    the window does not stop it. ``cancel`` exists only so the owning client
    can shut down without leaking the task.
    """

    def __init__(
        self,
        store: TokenStore,
        notifications: NotificationChannel,
        *,
        grace_seconds: float = 30,
        login_path: str = "/login",
        redirect: Optional[Redirect] = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.grace_seconds = grace_seconds
        self.login_path = login_path
        self.redirect = redirect or _log_redirect
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, reason: str) -> bool:
        """Start the countdown; returns False if one is already running."""
        if self.pending:
            logger.debug("forced_logout_already_pending", reason=reason)
            return False
        logger.warning("forced_logout_scheduled", reason=reason, grace_seconds=self.grace_seconds)
        self.notifications.warning(
            forced_logout_message(self.grace_seconds),
            duration_ms=int(self.grace_seconds * 1000),
            dismissible=False,
            tag="forced_logout",
        )
        self._task = asyncio.get_running_loop().create_task(self._run(reason))
        return True

    async def _run(self, reason: str) -> None:
        await asyncio.sleep(self.grace_seconds)
        try:
            self.store.clear()
        except TokenStoreError as exc:
            logger.error("forced_logout_clear_failed", reason=reason, error=str(exc))
        finally:
            logger.info("forced_logout_completed", reason=reason, redirect=self.login_path)
            result = self.redirect(self.login_path)
            if inspect.isawaitable(result):
                await result

    async def wait(self) -> None:
        """Block until the running countdown, if any, has finished."""
        if self._task is not None:
            await self._task

    async def cancel(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
