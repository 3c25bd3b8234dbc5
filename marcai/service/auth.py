from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from marcai.api.client import ApiClient
from marcai.api.schemas import AuthPayload, Envelope, ProfilePayload
from marcai.logging import get_logger
from marcai.service.errors import ApiError, AuthenticationError, RefreshFailedError
from marcai.storage.token_store import TokenStore

LOGIN_FAILED = "Erro ao fazer login"
REGISTER_FAILED = "Erro ao criar conta"

ADMIN_ROLES = frozenset({"admin", "superadmin"})


@dataclass(frozen=True)
class LoginResult:
    success: bool
    user: Optional[dict] = None
    tenant: Optional[dict] = None
    error: Optional[str] = None


class AuthSession:
    """Login state of the current user and tenant.

    Wraps the ``/auth`` endpoints and keeps the token store and the refresh
    coordinator in step with them.
    """

    def __init__(self, client: ApiClient, store: Optional[TokenStore] = None) -> None:
        self.client = client
        self.store = store if store is not None else client.store
        self.logger = get_logger(__name__)
        self._user: Optional[dict] = None
        self._tenant: Optional[dict] = None

    @property
    def user(self) -> Optional[dict]:
        return self._user

    @property
    def tenant(self) -> Optional[dict]:
        return self._tenant

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def is_admin(self) -> bool:
        return bool(self._user) and self._user.get("role") in ADMIN_ROLES

    @property
    def plan_type(self) -> str:
        plano = (self._tenant or {}).get("plano") or {}
        return plano.get("tipo") or "basico"

    def has_feature(self, feature: str) -> bool:
        limites = (self._tenant or {}).get("limites") or {}
        return limites.get(feature) is True

    async def login(self, email: str, password: str) -> LoginResult:
        return await self._authenticate(
            "/auth/login", {"email": email, "password": password}, LOGIN_FAILED
        )

    async def register(self, data: dict[str, Any]) -> LoginResult:
        return await self._authenticate("/auth/register", data, REGISTER_FAILED)

    async def _authenticate(self, path: str, body: dict[str, Any], default_error: str) -> LoginResult:
        try:
            payload = await self.client.post(path, json=body)
        except ApiError as exc:
            self.logger.warning("auth_request_failed", path=path, error_code=exc.error_code)
            server_error = exc.detail.get("error") if isinstance(exc.detail, dict) else None
            return LoginResult(success=False, error=server_error or default_error)

        try:
            envelope = Envelope.model_validate(payload)
            if not envelope.success:
                return LoginResult(success=False, error=envelope.error or default_error)
            data = AuthPayload.model_validate(envelope.data)
        except PydanticValidationError as exc:
            self.logger.error("auth_response_invalid", path=path, error=str(exc))
            return LoginResult(success=False, error=default_error)

        self.store.set_credentials(data.tokens.to_credentials())
        self.store.set_profile(data.user, data.tenant)
        self.client.coordinator.mark_authenticated()
        self._user, self._tenant = data.user, data.tenant
        self.logger.info("auth_session_started", path=path, user_id=data.user.get("_id"))
        return LoginResult(success=True, user=data.user, tenant=data.tenant)

    async def logout(self) -> None:
        """Invalidate the refresh token server-side, then always clear locally."""
        refresh_token = self.store.get_refresh_token()
        try:
            await self.client.post("/auth/logout", json={"refreshToken": refresh_token})
        except ApiError as exc:
            self.logger.warning("logout_request_failed", error_code=exc.error_code)
        finally:
            self._clear("logout")

    def _clear(self, reason: str) -> None:
        self.store.clear()
        self.client.coordinator.invalidate(reason)
        self._user = None
        self._tenant = None

    async def restore(self) -> bool:
        """Reload a persisted session and validate it against ``/auth/me``."""
        snapshot = self.store.snapshot()
        if not (snapshot.access_token and snapshot.user and snapshot.tenant):
            return False

        self._user, self._tenant = snapshot.user, snapshot.tenant
        self.client.coordinator.mark_authenticated()
        try:
            await self.refresh_profile(raise_errors=True)
        except AuthenticationError:
            try:
                await self.client.coordinator.refresh()
            except RefreshFailedError:
                self.logger.info("stored_session_rejected")
                self._clear("restore_failed")
                return False
        except ApiError as exc:
            # Backend unreachable: keep the cached profile until it answers
            self.logger.warning("session_validation_skipped", error_code=exc.error_code)
        return self.is_authenticated

    async def refresh_profile(self, *, raise_errors: bool = False) -> bool:
        """Re-read ``/auth/me`` and persist the snapshot."""
        try:
            payload = await self.client.get("/auth/me")
        except ApiError as exc:
            self.logger.warning("profile_refresh_failed", error_code=exc.error_code)
            if raise_errors:
                raise
            return False
        try:
            envelope = Envelope.model_validate(payload)
            if not envelope.success:
                return False
            data = ProfilePayload.model_validate(envelope.data)
        except PydanticValidationError as exc:
            self.logger.error("profile_response_invalid", error=str(exc))
            return False
        self._user, self._tenant = data.user, data.tenant
        self.store.set_profile(data.user, data.tenant)
        return True
