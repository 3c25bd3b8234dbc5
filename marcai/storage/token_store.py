from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol

from redis import Redis
from redis.exceptions import RedisError

from marcai.config import Settings, TokenStoreBackend
from marcai.logging import get_logger
from marcai.storage.errors import TokenStoreError
from marcai.storage.models import CredentialPair, StoredSession

logger = get_logger(__name__)


class TokenStore(Protocol):
    def get_access_token(self) -> Optional[str]: ...

    def get_refresh_token(self) -> Optional[str]: ...

    def get_credentials(self) -> Optional[CredentialPair]: ...

    def set_credentials(self, pair: CredentialPair) -> None: ...

    def get_user(self) -> Optional[dict]: ...

    def get_tenant(self) -> Optional[dict]: ...

    def set_profile(self, user: Optional[dict], tenant: Optional[dict]) -> None: ...

    def snapshot(self) -> StoredSession: ...

    def clear(self) -> None: ...


class KeyValueTokenStore:
    """Session state kept as four independent string entries.

    Subclasses provide the raw multi-key primitives; every credential write
    goes through ``_set_many`` so both tokens land in one operation.
    """

    def __init__(self, prefix: str = "marcai") -> None:
        self.prefix = prefix
        self.access_key = f"{prefix}_access_token"
        self.refresh_key = f"{prefix}_refresh_token"
        self.user_key = f"{prefix}_user"
        self.tenant_key = f"{prefix}_tenant"

    @property
    def keys(self) -> tuple[str, str, str, str]:
        return (self.access_key, self.refresh_key, self.user_key, self.tenant_key)

    def _get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        raise NotImplementedError

    def _set_many(self, values: Mapping[str, str]) -> None:
        raise NotImplementedError

    def _delete_many(self, keys: Iterable[str]) -> None:
        raise NotImplementedError

    def get_access_token(self) -> Optional[str]:
        return self._get_many([self.access_key])[self.access_key]

    def get_refresh_token(self) -> Optional[str]:
        return self._get_many([self.refresh_key])[self.refresh_key]

    def get_credentials(self) -> Optional[CredentialPair]:
        values = self._get_many([self.access_key, self.refresh_key])
        access, refresh = values[self.access_key], values[self.refresh_key]
        if access and refresh:
            return CredentialPair(access, refresh)
        return None

    def set_credentials(self, pair: CredentialPair) -> None:
        self._set_many({self.access_key: pair.access_token, self.refresh_key: pair.refresh_token})

    def _decode_profile(self, key: str, raw: Optional[str]) -> Optional[dict]:
        if not raw:
            return None
        try:
            value = json.loads(raw)
        except ValueError as exc:
            logger.warning("token_store_profile_corrupt", key=key, error=str(exc))
            return None
        return value if isinstance(value, dict) else None

    def get_user(self) -> Optional[dict]:
        return self._decode_profile(self.user_key, self._get_many([self.user_key])[self.user_key])

    def get_tenant(self) -> Optional[dict]:
        return self._decode_profile(self.tenant_key, self._get_many([self.tenant_key])[self.tenant_key])

    def set_profile(self, user: Optional[dict], tenant: Optional[dict]) -> None:
        values: Dict[str, str] = {}
        if user is not None:
            values[self.user_key] = json.dumps(user)
        if tenant is not None:
            values[self.tenant_key] = json.dumps(tenant)
        if values:
            self._set_many(values)

    def snapshot(self) -> StoredSession:
        values = self._get_many(self.keys)
        return StoredSession(
            access_token=values[self.access_key] or None,
            refresh_token=values[self.refresh_key] or None,
            user=self._decode_profile(self.user_key, values[self.user_key]),
            tenant=self._decode_profile(self.tenant_key, values[self.tenant_key]),
        )

    def clear(self) -> None:
        self._delete_many(self.keys)


class MemoryTokenStore(KeyValueTokenStore):
    """Process-local store for tests and short-lived scripts."""

    def __init__(self, prefix: str = "marcai") -> None:
        super().__init__(prefix)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        with self._lock:
            return {key: self._data.get(key) for key in keys}

    def _set_many(self, values: Mapping[str, str]) -> None:
        with self._lock:
            self._data.update(values)

    def _delete_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)


class FileTokenStore(KeyValueTokenStore):
    """JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: str | os.PathLike, prefix: str = "marcai") -> None:
        super().__init__(prefix)
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except ValueError as exc:
            logger.warning("token_store_file_corrupt", path=str(self.path), error=str(exc))
            return {}
        if not isinstance(data, dict):
            return {}
        return {key: value for key, value in data.items() if isinstance(value, str)}

    def _write(self, data: Dict[str, str]) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TokenStoreError("session directory unavailable", {"path": str(directory)}) from exc
        try:
            os.chmod(directory, 0o700)
        except PermissionError:
            # Directory may already exist with different ownership
            pass
        fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix=".session_", suffix=".tmp")
        try:
            try:
                os.write(fd, json.dumps(data, indent=2).encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            logger.error("token_store_persist_failed", path=str(self.path), error=str(exc))
            raise TokenStoreError("failed to persist session state", {"path": str(self.path)}) from exc

    def _get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        with self._lock:
            data = self._read()
        return {key: data.get(key) for key in keys}

    def _set_many(self, values: Mapping[str, str]) -> None:
        with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)

    def _delete_many(self, keys: Iterable[str]) -> None:
        doomed = set(keys)
        with self._lock:
            data = self._read()
            if not doomed.intersection(data):
                return
            self._write({key: value for key, value in data.items() if key not in doomed})


class RedisTokenStore(KeyValueTokenStore):
    """Redis-backed store; MSET and DEL keep multi-key writes atomic."""

    def __init__(self, client: Redis, prefix: str = "marcai") -> None:
        super().__init__(prefix)
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "marcai", *, socket_timeout: float = 5.0) -> "RedisTokenStore":
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, prefix)

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode()
        return value

    def _get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)
        try:
            values = self.client.mget(keys)
        except RedisError as exc:
            raise TokenStoreError("failed to read session state", {"keys": keys}) from exc
        return {key: self._text(value) for key, value in zip(keys, values)}

    def _set_many(self, values: Mapping[str, str]) -> None:
        try:
            self.client.mset(dict(values))
        except RedisError as exc:
            logger.error("token_store_redis_write_failed", error=str(exc))
            raise TokenStoreError("failed to persist session state") from exc

    def _delete_many(self, keys: Iterable[str]) -> None:
        try:
            self.client.delete(*keys)
        except RedisError as exc:
            logger.error("token_store_redis_delete_failed", error=str(exc))
            raise TokenStoreError("failed to clear session state") from exc


def build_token_store(settings: Settings) -> KeyValueTokenStore:
    """Instantiate the backend selected by ``TOKEN_STORE_BACKEND``."""
    backend = settings.token_store_backend
    if backend == TokenStoreBackend.MEMORY:
        return MemoryTokenStore(settings.token_key_prefix)
    if backend == TokenStoreBackend.REDIS:
        return RedisTokenStore.from_url(settings.redis_url, settings.token_key_prefix)
    return FileTokenStore(settings.token_store_path, settings.token_key_prefix)
