from __future__ import annotations

from typing import Any, Dict, Optional


class TokenStoreError(Exception):
    """Raised when the token store cannot read or persist session state."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


__all__ = ["TokenStoreError"]
