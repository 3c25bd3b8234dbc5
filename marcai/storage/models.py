from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CredentialPair:
    access_token: str
    refresh_token: str

    def __post_init__(self) -> None:
        if not self.access_token or not self.refresh_token:
            raise ValueError("credential pair requires both tokens")

    @classmethod
    def from_payload(cls, tokens: dict) -> "CredentialPair":
        """Build from the backend's ``{"accessToken", "refreshToken"}`` object."""
        return cls(
            access_token=tokens.get("accessToken", ""),
            refresh_token=tokens.get("refreshToken", ""),
        )


@dataclass(frozen=True)
class StoredSession:
    """Point-in-time snapshot of everything the token store holds."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[dict] = None
    tenant: Optional[dict] = None

    @property
    def credentials(self) -> Optional[CredentialPair]:
        if self.access_token and self.refresh_token:
            return CredentialPair(self.access_token, self.refresh_token)
        return None
