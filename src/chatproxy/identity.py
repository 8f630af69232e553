from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> str | None:
        """Return the user id the bearer token belongs to, or None."""
        ...


class StaticTokenVerifier:
    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> str | None:
        return self._tokens.get(token)


class RemoteIdentityVerifier:
    """Resolves tokens against an auth service exposing ``GET {url}/user``."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def verify(self, token: str) -> str | None:
        headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        try:
            response = await self._client.get(f"{self.url}/user", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("identity.unreachable url=%s detail=%s", self.url, exc)
            return None
        if response.status_code != 200:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        user_id = payload.get("id") if isinstance(payload, dict) else None
        return user_id if isinstance(user_id, str) and user_id else None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None
