import asyncio
import inspect
import json
import os
import sys
from pathlib import Path

os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("TOKEN_STORE_BACKEND", "memory")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from marcai.api.client import ApiClient  # noqa: E402
from marcai.config import Settings, reset_settings_cache  # noqa: E402
from marcai.service.notifications import NotificationChannel  # noqa: E402
from marcai.storage.models import CredentialPair  # noqa: E402
from marcai.storage.token_store import MemoryTokenStore  # noqa: E402

BASE_URL = "http://api.test/api"


@pytest.fixture(autouse=True)
def reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


def _json(status_code: int, body) -> httpx.Response:
    return httpx.Response(status_code, json=body)


class FakeBackend:
    """In-process stand-in for the scheduling API behind httpx.MockTransport."""

    USER = {"_id": "u1", "nome": "Laura", "email": "laura@example.com", "role": "admin"}
    TENANT = {
        "id": "t1",
        "nome": "Studio Laura",
        "plano": {"tipo": "pro"},
        "limites": {"whatsapp": True, "relatorios": False},
    }

    def __init__(self) -> None:
        self.valid_access = {"T1"}
        self.expired_access: set[str] = set()
        self.refresh_map = {"R1": ("T2", "R2")}
        self.refresh_calls = 0
        self.refresh_delay = 0.0
        self.refresh_status = 200
        self.refresh_responder = None
        self.password = "secret123"
        self.calls: list[tuple[str, str, str | None]] = []
        self.routes: dict[tuple[str, str], object] = {}

    def expire(self, token: str) -> None:
        self.valid_access.discard(token)
        self.expired_access.add(token)

    def route(self, method: str, path: str, responder) -> None:
        self.routes[(method.upper(), path)] = responder

    def calls_to(self, path: str) -> list[tuple[str, str, str | None]]:
        return [call for call in self.calls if call[1] == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        auth = request.headers.get("Authorization")
        self.calls.append((request.method, path, auth))

        if path == "/auth/refresh":
            return await self._refresh(request)
        if path in ("/auth/login", "/auth/register"):
            return self._login(request)
        if path == "/auth/logout":
            return _json(200, {"success": True, "message": "Logout realizado"})

        token = auth[len("Bearer "):] if auth and auth.startswith("Bearer ") else None
        if token in self.expired_access:
            return _json(401, {"success": False, "error": "Token expirado", "code": "TOKEN_EXPIRED"})
        if token not in self.valid_access:
            return _json(401, {"success": False, "error": "Token inválido"})

        if path == "/auth/me":
            return _json(200, {"success": True, "data": {"user": self.USER, "tenant": self.TENANT}})
        responder = self.routes.get((request.method, path))
        if responder is None:
            return _json(200, {"success": True, "data": {"path": path, "token": token}})
        return responder(request) if callable(responder) else responder

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_responder is not None:
            return self.refresh_responder(request)
        body = json.loads(request.content or b"{}")
        issued = self.refresh_map.get(body.get("refreshToken"))
        if self.refresh_status != 200 or issued is None:
            return _json(
                self.refresh_status if self.refresh_status != 200 else 401,
                {"success": False, "error": "Refresh token inválido ou expirado"},
            )
        access, refresh = issued
        self.valid_access.add(access)
        return _json(
            200,
            {"success": True, "data": {"tokens": {"accessToken": access, "refreshToken": refresh}}},
        )

    def _login(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        if body.get("password") != self.password:
            return _json(401, {"success": False, "error": "Credenciais inválidas"})
        self.valid_access.add("T1")
        return _json(
            200,
            {
                "success": True,
                "data": {
                    "user": self.USER,
                    "tenant": self.TENANT,
                    "tokens": {"accessToken": "T1", "refreshToken": "R1"},
                },
            },
        )


@pytest.fixture
def settings():
    return Settings(
        api_base_url=BASE_URL,
        forced_logout_grace_seconds=0.05,
        token_store_backend="memory",
    )


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def logged_in_store(store):
    store.set_credentials(CredentialPair("T1", "R1"))
    return store


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def notifications():
    return NotificationChannel()


@pytest.fixture
def redirects():
    return []


@pytest.fixture
def make_client(settings, store, backend, notifications, redirects):
    def _factory(**overrides) -> ApiClient:
        options = {
            "store": store,
            "notifications": notifications,
            "redirect": redirects.append,
            "transport": httpx.MockTransport(backend.handler),
        }
        options.update(overrides)
        return ApiClient(settings, **options)

    return _factory
