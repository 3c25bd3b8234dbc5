from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from marcai.api.schemas import Envelope, RefreshPayload
from marcai.config import Settings, get_settings
from marcai.logging import get_logger, set_request_id
from marcai.service import messages
from marcai.service.errors import (
    ApiError,
    AuthenticationExpiredError,
    NetworkError,
    RefreshFailedError,
    RequestTimeoutError,
    ResponseDecodeError,
    error_for_response,
)
from marcai.service.logout import ForcedLogout, Redirect
from marcai.service.notifications import NotificationChannel
from marcai.service.refresh import RefreshCoordinator
from marcai.storage.models import CredentialPair
from marcai.storage.token_store import TokenStore, build_token_store

logger = get_logger(__name__)

REFRESH_PATH = "/auth/refresh"


def is_auth_boundary(url: str, base_url: str = "") -> bool:
    """True for login/refresh/logout and every other ``/auth/`` endpoint."""
    path = httpx.URL(url).path
    base_path = httpx.URL(base_url).path.rstrip("/") if base_url else ""
    if base_path and path.startswith(base_path + "/"):
        path = path[len(base_path):]
    path = path.lstrip("/")
    return path == "auth" or path.startswith("auth/")


@dataclass(frozen=True)
class RequestContext:
    """Immutable description of one logical API call.

    A replay after a token refresh is a new context with ``retry_count`` + 1;
    the original is never mutated.
    """

    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    auth_boundary: bool = False
    retry_count: int = 0

    def retried(self) -> "RequestContext":
        return replace(self, retry_count=self.retry_count + 1)


class ApiClient:
    """Async client for the scheduling backend.

    Attaches the stored bearer token to every request, recovers from an
    expired access token through a single shared refresh, and publishes
    failures on the notification channel before raising them.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[TokenStore] = None,
        notifications: Optional[NotificationChannel] = None,
        coordinator: Optional[RefreshCoordinator] = None,
        forced_logout: Optional[ForcedLogout] = None,
        redirect: Optional[Redirect] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store if store is not None else build_token_store(self.settings)
        self.notifications = notifications or NotificationChannel(
            default_duration_ms=self.settings.notification_duration_ms,
            error_duration_ms=self.settings.error_notification_duration_ms,
        )
        self.forced_logout = forced_logout or ForcedLogout(
            self.store,
            self.notifications,
            grace_seconds=self.settings.forced_logout_grace_seconds,
            login_path=self.settings.login_path,
            redirect=redirect,
        )
        self.coordinator = coordinator or RefreshCoordinator(
            self.store,
            self._request_refresh,
            on_failure=self.forced_logout.trigger,
        )
        self._http = httpx.AsyncClient(
            base_url=self.settings.api_base_url,
            timeout=httpx.Timeout(self.settings.request_timeout_seconds),
            transport=transport,
            event_hooks={"request": [self._attach_token]},
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.forced_logout.cancel()
        await self._http.aclose()

    async def _attach_token(self, request: httpx.Request) -> None:
        token = self.store.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    async def get(self, url: str, **kwargs) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, json: Any = None, **kwargs) -> Any:
        return await self.request("POST", url, json=json, **kwargs)

    async def put(self, url: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PUT", url, json=json, **kwargs)

    async def patch(self, url: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", url, json=json, **kwargs)

    async def delete(self, url: str, **kwargs) -> Any:
        return await self.request("DELETE", url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            ApiError: a subclass matching the failure; see ``marcai.service.errors``.
        """
        context = RequestContext(
            method=method.upper(),
            url=url,
            params=params,
            json=json,
            headers=dict(headers or {}),
            auth_boundary=is_auth_boundary(url, self.settings.api_base_url),
        )
        set_request_id()
        return await self._dispatch(context)

    async def _dispatch(self, context: RequestContext) -> Any:
        try:
            response = await self._http.request(
                context.method,
                context.url,
                params=context.params,
                json=context.json,
                headers=context.headers or None,
            )
        except httpx.TimeoutException as exc:
            error = RequestTimeoutError(
                f"request timed out after {self.settings.request_timeout_ms} ms",
                user_message=messages.TIMEOUT_ERROR,
            )
            self._report(context, error)
            raise error from exc
        except httpx.TransportError as exc:
            error = NetworkError(
                f"server unreachable: {exc.__class__.__name__}",
                user_message=messages.UNREACHABLE_ERROR,
            )
            self._report(context, error)
            raise error from exc
        except httpx.RequestError as exc:
            error = ResponseDecodeError(
                f"unreadable response: {exc.__class__.__name__}: {exc}",
                user_message=messages.GENERIC_ERROR,
            )
            self._report(context, error)
            raise error from exc

        payload = self._decode(response)
        if response.is_success:
            self._surface_message(context, payload)
            return payload
        return await self._handle_failure(context, response, payload)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _surface_message(self, context: RequestContext, payload: Any) -> None:
        if context.auth_boundary or not isinstance(payload, dict):
            return
        text = payload.get("message")
        if isinstance(text, str) and text.strip() and payload.get("success", True):
            self.notifications.success(text.strip())

    async def _handle_failure(
        self, context: RequestContext, response: httpx.Response, payload: Any
    ) -> Any:
        error = error_for_response(response.status_code, payload)

        if context.auth_boundary:
            self._report(context, error)
            raise error

        if response.status_code == 401:
            if context.retry_count > 0:
                logger.warning("refresh_retry_exhausted", method=context.method, url=context.url)
                self._report(context, error)
                raise error
            if isinstance(error, AuthenticationExpiredError):
                return await self._recover(context, response, error)
            self.coordinator.invalidate("invalid_credentials")
            self.forced_logout.trigger("invalid_credentials")
            logger.warning("api_credentials_rejected", method=context.method, url=context.url)
            raise error

        self._report(context, error)
        raise error

    async def _recover(
        self, context: RequestContext, response: httpx.Response, error: ApiError
    ) -> Any:
        sent = response.request.headers.get("Authorization", "")
        current = self.store.get_access_token()
        if current and sent != f"Bearer {current}" and not self.coordinator.refreshing:
            # Token was rotated while this request was in flight
            logger.debug("replay_with_rotated_token", method=context.method, url=context.url)
            return await self._dispatch(context.retried())
        try:
            await self.coordinator.refresh()
        except RefreshFailedError as exc:
            logger.warning(
                "request_rejected_after_refresh_failure",
                method=context.method,
                url=context.url,
            )
            raise exc from error
        return await self._dispatch(context.retried())

    def _report(self, context: RequestContext, error: ApiError) -> None:
        log_fn = logger.error if (error.status_code or 0) >= 500 else logger.warning
        log_fn(
            "api_request_failed",
            method=context.method,
            url=context.url,
            status_code=error.status_code,
            error_code=error.error_code,
            message=error.message,
            retry_count=context.retry_count,
        )
        if not context.auth_boundary:
            self.notifications.error(error.user_message, tag=error.error_code)

    async def _request_refresh(self, refresh_token: str) -> CredentialPair:
        context = RequestContext(
            method="POST",
            url=REFRESH_PATH,
            json={"refreshToken": refresh_token},
            auth_boundary=True,
        )
        payload = await self._dispatch(context)
        try:
            envelope = Envelope.model_validate(payload)
            if not envelope.success:
                raise RefreshFailedError(envelope.error or "refresh rejected by server")
            return RefreshPayload.model_validate(envelope.data).tokens.to_credentials()
        except PydanticValidationError as exc:
            raise RefreshFailedError("malformed refresh response") from exc
