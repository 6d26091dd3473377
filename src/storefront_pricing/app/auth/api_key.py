from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status


class ApiKeyAuth:
    """FastAPI dependency checking ``X-Api-Key``; an empty key set disables the check."""

    def __init__(self, valid_keys: set[str]) -> None:
        self.valid_keys = valid_keys

    def _known(self, candidate: str) -> bool:
        return any(hmac.compare_digest(candidate, key) for key in self.valid_keys)

    def __call__(self, x_api_key: str | None = Header(default=None)) -> None:
        if not self.valid_keys:
            return
        if not x_api_key or not self._known(x_api_key):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
