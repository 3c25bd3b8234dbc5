from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from marcai.logging import get_logger
from marcai.service.errors import ApiError, RefreshFailedError
from marcai.storage.errors import TokenStoreError
from marcai.storage.models import CredentialPair
from marcai.storage.token_store import TokenStore

logger = get_logger(__name__)

PerformRefresh = Callable[[str], Awaitable[CredentialPair]]


class SessionState(str, Enum):
    AUTHENTICATED = "authenticated"
    REFRESH_PENDING = "refresh_pending"
    UNAUTHENTICATED = "unauthenticated"


class RefreshCoordinator:
    """Single-flight access-token refresh shared by all failing requests.

    The first caller performs the refresh; anyone calling while it is in
    flight is queued and receives the same outcome in subscription order.
    All state lives on the instance and is only touched from the event loop.
    """

    def __init__(
        self,
        store: TokenStore,
        perform_refresh: PerformRefresh,
        *,
        on_failure: Optional[Callable[[str], object]] = None,
    ) -> None:
        self.store = store
        self._perform_refresh = perform_refresh
        self._on_failure = on_failure
        self.state = SessionState.AUTHENTICATED
        self._refreshing = False
        self._invalidated = False
        self._subscribers: List[asyncio.Future] = []
        self.refresh_calls = 0

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending_requests(self) -> int:
        return len(self._subscribers)

    def mark_authenticated(self) -> None:
        """Called after a login produced a fresh credential pair."""
        self._invalidated = False
        self.state = SessionState.AUTHENTICATED

    def invalidate(self, reason: str) -> None:
        """Move to the terminal state without attempting a refresh."""
        logger.info("session_invalidated", reason=reason, previous_state=self.state.value)
        self.state = SessionState.UNAUTHENTICATED
        if self._refreshing:
            self._invalidated = True

    async def refresh(self) -> str:
        """Return a new access token, sharing one refresh call per episode."""
        if self.state == SessionState.UNAUTHENTICATED:
            raise RefreshFailedError("session terminated; a new login is required")

        if self._refreshing:
            waiter = asyncio.get_running_loop().create_future()
            self._subscribers.append(waiter)
            logger.debug("refresh_subscriber_queued", queued=len(self._subscribers))
            return await waiter

        self._refreshing = True
        self.state = SessionState.REFRESH_PENDING
        self.refresh_calls += 1
        logger.info("token_refresh_started")
        self._invalidated = False
        try:
            pair = await self._request_pair()
        except asyncio.CancelledError:
            # Release the queue without ending the session
            self._finish(
                SessionState.AUTHENTICATED,
                error=RefreshFailedError("token refresh interrupted"),
            )
            raise
        except Exception as exc:
            failure = exc if isinstance(exc, RefreshFailedError) else RefreshFailedError(
                "token refresh failed",
                detail={"cause": exc.__class__.__name__, "message": str(exc)},
            )
            self._finish(SessionState.UNAUTHENTICATED, error=failure)
            log_fn = logger.warning if isinstance(exc, (ApiError, TokenStoreError)) else logger.error
            log_fn("token_refresh_failed", error=str(exc), cause=exc.__class__.__name__)
            if self._on_failure is not None:
                self._on_failure("refresh_failed")
            raise failure from exc

        self._finish(SessionState.AUTHENTICATED, token=pair.access_token)
        logger.info("token_refresh_succeeded")
        return pair.access_token

    async def _request_pair(self) -> CredentialPair:
        refresh_token = self.store.get_refresh_token()
        if not refresh_token:
            raise RefreshFailedError("no refresh token stored")
        pair = await self._perform_refresh(refresh_token)
        self.store.set_credentials(pair)
        return pair

    def _finish(
        self,
        state: SessionState,
        *,
        token: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._refreshing = False
        if self._invalidated and state == SessionState.AUTHENTICATED:
            # Credentials were rejected while the refresh was in flight
            state = SessionState.UNAUTHENTICATED
        self._invalidated = False
        self.state = state
        subscribers, self._subscribers = self._subscribers, []
        for waiter in subscribers:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)
