"""Credential providers.

Both providers keep API credentials in a per-audience cache guarded by one
asyncio.Lock per audience: a store for an audience is visible to every
later fetch for that audience, and different audiences never wait on each
other.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx

from .exceptions import CredentialsError
from .models import ApiCredentials, Credentials

if TYPE_CHECKING:
    from .config import EnrollmentConfig

logger = logging.getLogger(__name__)


class CachingCredentialProvider(ABC):
    """Base class holding the per-audience API credential cache.

    Subclasses implement ``_obtain`` to mint a credential on cache miss.
    """

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._session = credentials
        self._cache: dict[str, ApiCredentials] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, audience: str) -> asyncio.Lock:
        return self._locks.setdefault(audience, asyncio.Lock())

    async def fetch_credentials(self) -> Credentials:
        if self._session is None:
            raise CredentialsError("No session credentials", code="login_required")
        return self._session

    async def store_credentials(self, credentials: Credentials) -> None:
        """Replace the session credentials and drop cached API credentials."""
        self._session = credentials
        self._cache.clear()

    async def fetch_api_credentials(self, audience: str, scope: str) -> ApiCredentials:
        async with self._lock(audience):
            cached = self._cache.get(audience)
            if cached is not None and not cached.is_expired() and cached.covers(scope):
                return cached
            credentials = await self._obtain(audience, scope)
            self._cache[audience] = credentials
            return credentials

    async def store_api_credentials(
        self, credentials: ApiCredentials, audience: str
    ) -> None:
        async with self._lock(audience):
            self._cache[audience] = credentials
        logger.debug("Stored API credentials for %s", audience)

    def clear(self) -> None:
        self._cache.clear()

    @abstractmethod
    async def _obtain(self, audience: str, scope: str) -> ApiCredentials:
        """Mint a credential for ``audience``/``scope``.

        Raises:
            CredentialsError: If no credential can be obtained.
        """


class InMemoryCredentialProvider(CachingCredentialProvider):
    """Serves only credentials that were stored explicitly.

    Useful for tests and for hosts that obtain API credentials themselves.
    A fetch that the cache cannot satisfy raises ``CredentialsError`` with
    ``miss_code`` (``login_required`` by default).
    """

    def __init__(
        self,
        credentials: Credentials | None = None,
        api_credentials: dict[str, ApiCredentials] | None = None,
        *,
        miss_code: str = "login_required",
    ) -> None:
        super().__init__(credentials)
        self._cache.update(api_credentials or {})
        self._miss_code = miss_code

    async def _obtain(self, audience: str, scope: str) -> ApiCredentials:
        raise CredentialsError(
            f"No API credentials for {audience} with scope {scope!r}",
            code=self._miss_code,
        )


class RefreshTokenCredentialProvider(CachingCredentialProvider):
    """Exchanges the session refresh token for audience-bound credentials.

    The authorization server answers ``mfa_required`` when the session is
    not strong enough for the requested scope; this surfaces as a
    ``CredentialsError`` with that code.

    Example:
        ```python
        provider = RefreshTokenCredentialProvider(config, session_credentials)
        api = await provider.fetch_api_credentials(
            config.audience, "openid read:me:authentication_methods"
        )
        ```
    """

    def __init__(
        self,
        config: EnrollmentConfig,
        credentials: Credentials,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(credentials)
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _obtain(self, audience: str, scope: str) -> ApiCredentials:
        session = await self.fetch_credentials()
        if not session.refresh_token:
            raise CredentialsError(
                "Session has no refresh token", code="login_required"
            )

        data = {
            "grant_type": "refresh_token",
            "client_id": self._config.client_id,
            "refresh_token": session.refresh_token,
            "audience": audience,
            "scope": scope,
        }
        try:
            response = await self._http.post(
                self._config.token_endpoint,
                data=data,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._config.user_agent,
                },
            )
        except httpx.TransportError as e:
            raise CredentialsError("Token endpoint unreachable") from e

        body = _json_or_empty(response)
        if response.is_error:
            code = body.get("error")
            description = body.get("error_description") or f"HTTP {response.status_code}"
            logger.info(
                "Token refresh for %s failed: %s", audience, code or response.status_code
            )
            raise CredentialsError(
                str(description),
                code=code if isinstance(code, str) else None,
                status_code=response.status_code,
            )

        credentials = ApiCredentials.from_token_response(body, requested_scope=scope)
        rotated = body.get("refresh_token")
        if isinstance(rotated, str) and rotated != session.refresh_token:
            self._session = dataclasses.replace(session, refresh_token=rotated)
        logger.info("Obtained API credentials for %s", audience)
        return credentials


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


__all__: list[str] = [
    "CachingCredentialProvider",
    "InMemoryCredentialProvider",
    "RefreshTokenCredentialProvider",
]
