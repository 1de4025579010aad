"""Tests for AuthenticationMethodRegistry."""

from __future__ import annotations

import pytest
from conftest import AUDIENCE, FakeCredentialProvider, FakeMyAccountClient

from cqrs_ddd_enrollment.classifier import ErrorClassifier, ErrorKind
from cqrs_ddd_enrollment.config import EnrollmentConfig
from cqrs_ddd_enrollment.exceptions import MyAccountApiError
from cqrs_ddd_enrollment.models import (
    AuthenticationMethod,
    Factor,
    FactorKind,
    PasskeyAuthenticationMethod,
)
from cqrs_ddd_enrollment.registry import (
    AuthenticationMethodRegistry,
    filter_methods,
    has_confirmed_method,
)


def _method(method_id: str, method_type: str, confirmed: bool = True) -> AuthenticationMethod:
    return AuthenticationMethod(id=method_id, type=method_type, confirmed=confirmed)


@pytest.fixture
def registry(
    api_client: FakeMyAccountClient,
    credential_provider: FakeCredentialProvider,
    config: EnrollmentConfig,
) -> AuthenticationMethodRegistry:
    return AuthenticationMethodRegistry(
        client=api_client, credential_provider=credential_provider, config=config
    )


class TestListMethods:
    """Tests for list_methods."""

    @pytest.mark.asyncio
    async def test_returns_everything_unfiltered(
        self,
        registry: AuthenticationMethodRegistry,
        api_client: FakeMyAccountClient,
    ) -> None:
        api_client.add_method(_method("email|dev_1", "email"))
        api_client.add_method(_method("phone|dev_2", "phone", confirmed=False))
        api_client.add_method(_method("webauthn|dev_3", "webauthn-roaming"))

        methods = await registry.list_methods()

        assert [m.id for m in methods] == ["email|dev_1", "phone|dev_2", "webauthn|dev_3"]

    @pytest.mark.asyncio
    async def test_uses_read_scope(
        self,
        registry: AuthenticationMethodRegistry,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        await registry.list_methods()

        assert credential_provider.fetches == [
            (AUDIENCE, "openid read:me:authentication_methods")
        ]

    @pytest.mark.asyncio
    async def test_listing_twice_yields_same_methods(
        self,
        registry: AuthenticationMethodRegistry,
        api_client: FakeMyAccountClient,
    ) -> None:
        api_client.add_method(_method("totp|dev_1", "totp"))

        first = await registry.list_methods()
        second = await registry.list_methods()

        assert set(first) == set(second)


class TestDeleteMethod:
    """Tests for delete_method."""

    @pytest.mark.asyncio
    async def test_delete(
        self,
        registry: AuthenticationMethodRegistry,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        api_client.add_method(_method("email|dev_1", "email"))

        await registry.delete_method("email|dev_1")

        assert api_client.methods == {}
        assert credential_provider.fetches == [
            (AUDIENCE, "openid delete:me:authentication_methods")
        ]

    @pytest.mark.asyncio
    async def test_empty_id(
        self,
        registry: AuthenticationMethodRegistry,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        with pytest.raises(ValueError):
            await registry.delete_method("")
        assert credential_provider.fetches == []

    @pytest.mark.asyncio
    async def test_rejected_delete_reports_server_detail(
        self,
        registry: AuthenticationMethodRegistry,
        api_client: FakeMyAccountClient,
    ) -> None:
        """Test a rejected delete is not described as a bad passcode."""
        api_client.fail_next(
            "delete_authentication_method",
            MyAccountApiError(400, detail="Invalid authentication method id"),
        )

        with pytest.raises(MyAccountApiError) as exc_info:
            await registry.delete_method("email|dev_1")

        classified = ErrorClassifier().classify(exc_info.value)
        assert classified.kind is ErrorKind.UNKNOWN
        assert classified.message == "Invalid authentication method id"


class TestFactors:
    """Tests for list_factors and overview."""

    @pytest.mark.asyncio
    async def test_list_factors_scope(
        self,
        registry: AuthenticationMethodRegistry,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        factors = await registry.list_factors()

        assert len(factors) == len(FactorKind)
        assert credential_provider.fetches == [(AUDIENCE, "openid read:me:factors")]

    @pytest.mark.asyncio
    async def test_overview_skips_disabled_factors(
        self,
        registry: AuthenticationMethodRegistry,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        api_client.factors = [Factor(type="email"), Factor(type="passkey"), Factor(type="duo")]
        api_client.add_method(_method("email|dev_1", "email"))
        api_client.add_method(_method("email|dev_2", "email", confirmed=False))
        api_client.add_method(PasskeyAuthenticationMethod(id="passkey|dev_3", confirmed=False))

        overview = await registry.overview()

        assert [o.kind for o in overview] == [FactorKind.EMAIL, FactorKind.PASSKEY]
        assert [m.id for m in overview[0].methods] == ["email|dev_1"]
        assert [m.id for m in overview[1].methods] == ["passkey|dev_3"]
        assert api_client.calls == [
            ("get_factors", "token-1"),
            ("get_authentication_methods", "token-1"),
        ]
        assert credential_provider.fetches == [
            (AUDIENCE, "openid read:me:factors read:me:authentication_methods")
        ]

    @pytest.mark.asyncio
    async def test_overview_follows_supported_order(
        self, registry: AuthenticationMethodRegistry
    ) -> None:
        overview = await registry.overview([FactorKind.PASSKEY, FactorKind.SMS])

        assert [o.kind for o in overview] == [FactorKind.PASSKEY, FactorKind.SMS]
        assert not any(o.enrolled for o in overview)


class TestFilterMethods:
    """Tests for the filtering helpers."""

    def test_only_confirmed_for_otp_factors(self) -> None:
        methods = [
            _method("phone|dev_1", "phone"),
            _method("phone|dev_2", "phone", confirmed=False),
            _method("email|dev_3", "email"),
        ]

        assert [m.id for m in filter_methods(methods, FactorKind.SMS)] == ["phone|dev_1"]

    def test_unconfirmed_passkeys_are_listed(self) -> None:
        methods = [_method("passkey|dev_1", "passkey", confirmed=False)]

        assert len(filter_methods(methods, FactorKind.PASSKEY)) == 1

    def test_has_confirmed_method(self) -> None:
        assert has_confirmed_method([_method("a", "email", confirmed=False), _method("b", "totp")])
        assert not has_confirmed_method([_method("a", "email", confirmed=False)])
        assert not has_confirmed_method([])
