"""Read and delete operations over enrolled authentication methods."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import (
    DELETE_AUTHENTICATION_METHODS,
    READ_AUTHENTICATION_METHODS,
    READ_FACTORS,
    AuthenticationMethod,
    Factor,
    FactorKind,
    ScopedAudience,
)
from .observability.metrics import EnrollmentMetrics

if TYPE_CHECKING:
    from .config import EnrollmentConfig
    from .ports import ICredentialProvider, IMyAccountClient

logger = logging.getLogger(__name__)


def filter_methods(
    methods: Iterable[AuthenticationMethod], kind: FactorKind
) -> list[AuthenticationMethod]:
    """Methods of ``kind``; only confirmed ones except for passkeys."""
    return [
        method
        for method in methods
        if method.type == kind.value and (kind.lists_unconfirmed or method.confirmed)
    ]


def has_confirmed_method(methods: Iterable[AuthenticationMethod]) -> bool:
    return any(method.confirmed for method in methods)


@dataclass(frozen=True)
class FactorOverview:
    """One enabled factor and the user's methods for it."""

    kind: FactorKind
    methods: tuple[AuthenticationMethod, ...]

    @property
    def enrolled(self) -> bool:
        return bool(self.methods)


class AuthenticationMethodRegistry:
    """Lists, deletes and summarizes the user's authentication methods.

    Filtering by factor is left to callers (see ``filter_methods``);
    ``list_methods`` returns everything the API returns.
    """

    def __init__(
        self,
        *,
        client: IMyAccountClient,
        credential_provider: ICredentialProvider,
        config: EnrollmentConfig,
    ) -> None:
        self._client = client
        self._credentials = credential_provider
        audience = config.audience
        self.list_audience = ScopedAudience.for_scopes(
            audience, READ_AUTHENTICATION_METHODS
        )
        self.delete_audience = ScopedAudience.for_scopes(
            audience, DELETE_AUTHENTICATION_METHODS
        )
        self.factors_audience = ScopedAudience.for_scopes(audience, READ_FACTORS)
        self.overview_audience = ScopedAudience.for_scopes(
            audience, READ_FACTORS, READ_AUTHENTICATION_METHODS
        )

    async def list_methods(
        self, scoped_audience: ScopedAudience | None = None
    ) -> list[AuthenticationMethod]:
        """Return all enrolled methods, unfiltered."""
        token = await self._fetch_token(scoped_audience or self.list_audience)
        with EnrollmentMetrics.operation("list"):
            methods = await self._client.get_authentication_methods(token)
        logger.debug("Listed %d authentication methods", len(methods))
        return methods

    async def delete_method(
        self,
        method_id: str,
        scoped_audience: ScopedAudience | None = None,
    ) -> None:
        """Delete one enrolled method by id.

        Raises:
            ValueError: If ``method_id`` is empty.
        """
        if not method_id:
            raise ValueError("method_id must not be empty")
        token = await self._fetch_token(scoped_audience or self.delete_audience)
        with EnrollmentMetrics.operation("delete"):
            await self._client.delete_authentication_method(token, method_id)
        logger.info("Deleted authentication method %s", method_id)

    async def list_factors(
        self, scoped_audience: ScopedAudience | None = None
    ) -> list[Factor]:
        """Return the factors enabled on the tenant."""
        token = await self._fetch_token(scoped_audience or self.factors_audience)
        with EnrollmentMetrics.operation("list_factors"):
            return await self._client.get_factors(token)

    async def overview(
        self,
        supported: Sequence[FactorKind] = tuple(FactorKind),
        scoped_audience: ScopedAudience | None = None,
    ) -> list[FactorOverview]:
        """Enabled factors this SDK supports, each with the user's methods.

        One credential covering both read scopes is used for both calls.
        Factors come back in the order of ``supported``.
        """
        token = await self._fetch_token(scoped_audience or self.overview_audience)
        with EnrollmentMetrics.operation("list_factors"):
            factors = await self._client.get_factors(token)
        with EnrollmentMetrics.operation("list"):
            methods = await self._client.get_authentication_methods(token)

        enabled = {factor.kind for factor in factors}
        return [
            FactorOverview(kind=kind, methods=tuple(filter_methods(methods, kind)))
            for kind in supported
            if kind in enabled
        ]

    async def _fetch_token(self, target: ScopedAudience) -> str:
        credentials = await self._credentials.fetch_api_credentials(
            target.audience, target.scope
        )
        return credentials.access_token


__all__: list[str] = [
    "AuthenticationMethodRegistry",
    "FactorOverview",
    "filter_methods",
    "has_confirmed_method",
]
