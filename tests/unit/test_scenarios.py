"""End-to-end flows through the wired components."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import (
    AUDIENCE,
    VALID_OTP,
    FakeCredentialProvider,
    FakeInteractiveLogin,
    FakeMyAccountClient,
    mfa_required,
)

from cqrs_ddd_enrollment import (
    AuthenticationMethod,
    EmailTarget,
    EnrollmentComponents,
    EnrollmentConfig,
    ErrorKind,
    FactorKind,
    LoginCancelledError,
    MyAccountApiError,
    OtpProof,
    OutcomeStatus,
    PhoneEnrollmentChallenge,
    PhoneTarget,
    create_enrollment_components,
)
from cqrs_ddd_enrollment.models import EnrollmentChallenge


def _method(method_id: str, kind: FactorKind, confirmed: bool = True) -> AuthenticationMethod:
    return AuthenticationMethod(
        id=method_id,
        type=kind.value,
        confirmed=confirmed,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


async def _enter_valid_code(challenge: EnrollmentChallenge) -> OtpProof:
    return OtpProof(VALID_OTP)


@pytest.fixture
def sdk(
    config: EnrollmentConfig,
    api_client: FakeMyAccountClient,
    credential_provider: FakeCredentialProvider,
    interactive_login: FakeInteractiveLogin,
) -> EnrollmentComponents:
    return create_enrollment_components(
        config, credential_provider, interactive_login, client=api_client
    )


class TestDeleteThenList:
    """Deleting a method removes it from the next listing."""

    @pytest.mark.asyncio
    async def test_deleted_method_not_listed(
        self, sdk: EnrollmentComponents, api_client: FakeMyAccountClient
    ) -> None:
        api_client.add_method(_method("phone|dev_1", FactorKind.SMS))
        api_client.add_method(_method("totp|dev_2", FactorKind.TOTP))

        deleted = await sdk.delete_method("phone|dev_1")
        listed = await sdk.list_methods()

        assert deleted.status is OutcomeStatus.SUCCEEDED
        assert listed.value is not None
        assert {m.id for m in listed.value} == {"totp|dev_2"}

    @pytest.mark.asyncio
    async def test_delete_and_list_use_their_own_scopes(
        self,
        sdk: EnrollmentComponents,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        api_client.add_method(_method("email|dev_1", FactorKind.EMAIL))

        await sdk.delete_method("email|dev_1")
        await sdk.list_methods()

        assert credential_provider.fetches == [
            (AUDIENCE, "openid delete:me:authentication_methods"),
            (AUDIENCE, "openid read:me:authentication_methods"),
        ]

    @pytest.mark.asyncio
    async def test_delete_missing_method(self, sdk: EnrollmentComponents) -> None:
        outcome = await sdk.delete_method("email|missing")

        assert outcome.status is OutcomeStatus.NON_RECOVERABLE
        assert outcome.kind is ErrorKind.UNKNOWN


class TestStepUpDuringStart:
    """A start whose credential fetch needs a stronger session."""

    @pytest.mark.asyncio
    async def test_phone_start_after_step_up(
        self,
        sdk: EnrollmentComponents,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
        interactive_login: FakeInteractiveLogin,
    ) -> None:
        credential_provider.failures.append(mfa_required())

        outcome = await sdk.start(FactorKind.SMS, PhoneTarget("+14155550123"))

        scope = "openid create:me:authentication_methods"
        assert interactive_login.calls == [(AUDIENCE, scope)]
        assert outcome.status is OutcomeStatus.RETRY_SUCCEEDED
        assert isinstance(outcome.value, PhoneEnrollmentChallenge)
        assert api_client.calls == [("enroll_phone", "upgraded-token-1")]

    @pytest.mark.asyncio
    async def test_cancelled_step_up_does_not_retry(
        self,
        config: EnrollmentConfig,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
    ) -> None:
        login = FakeInteractiveLogin(LoginCancelledError())
        sdk = create_enrollment_components(
            config, credential_provider, login, client=api_client
        )
        credential_provider.failures.append(mfa_required())

        outcome = await sdk.start(FactorKind.SMS, PhoneTarget("+14155550123"))

        assert outcome.kind is ErrorKind.CANCELLED
        assert outcome.status is OutcomeStatus.NON_RECOVERABLE
        assert len(credential_provider.fetches) == 1
        assert api_client.calls == []


class TestStepUpDuringConfirm:
    """A confirm rejected with mfa_required."""

    @pytest.mark.asyncio
    async def test_enroll_restarts_with_new_challenge(
        self, sdk: EnrollmentComponents, api_client: FakeMyAccountClient
    ) -> None:
        api_client.fail_next(
            "confirm_enrollment", MyAccountApiError(403, code="mfa_required")
        )

        outcome = await sdk.enroll(
            FactorKind.EMAIL, EmailTarget("user@example.com"), _enter_valid_code
        )

        assert outcome.status is OutcomeStatus.RETRY_SUCCEEDED
        assert outcome.value is not None
        assert outcome.value.id == "email|dev_2"
        assert api_client.call_names() == [
            "enroll_email",
            "confirm_enrollment",
            "enroll_email",
            "confirm_enrollment",
        ]

    @pytest.mark.asyncio
    async def test_confirm_alone_ends_as_expired(
        self, sdk: EnrollmentComponents, api_client: FakeMyAccountClient
    ) -> None:
        """Test a spent challenge is not replayed after step-up."""
        started = await sdk.start(FactorKind.EMAIL, EmailTarget("user@example.com"))
        assert started.value is not None
        api_client.fail_next(
            "confirm_enrollment", MyAccountApiError(403, code="mfa_required")
        )

        outcome = await sdk.confirm(FactorKind.EMAIL, started.value, OtpProof(VALID_OTP))

        assert outcome.status is OutcomeStatus.NON_RECOVERABLE
        assert outcome.kind is ErrorKind.EXPIRED
        assert outcome.step_ups == 1
        assert api_client.call_names().count("confirm_enrollment") == 1


class TestFacade:
    """Wiring done by create_enrollment_components."""

    def test_one_operation_per_factor(self, sdk: EnrollmentComponents) -> None:
        assert set(sdk.operations) == set(FactorKind)
        assert sdk.operation(FactorKind.TOTP).kind is FactorKind.TOTP

    def test_step_up_cap_from_config(
        self,
        api_client: FakeMyAccountClient,
        credential_provider: FakeCredentialProvider,
        interactive_login: FakeInteractiveLogin,
    ) -> None:
        config = EnrollmentConfig(
            domain="tenant.example.com", client_id="client-123", max_step_ups=3
        )

        sdk = create_enrollment_components(
            config, credential_provider, interactive_login, client=api_client
        )

        assert sdk.orchestrator.max_step_ups == 3

    @pytest.mark.asyncio
    async def test_on_success_and_refresh(self, sdk: EnrollmentComponents) -> None:
        enrolled: list[AuthenticationMethod] = []
        refreshed: list[str] = []
        sdk.notifier.subscribe(lambda event: refreshed.append(event.operation))

        outcome = await sdk.enroll(
            FactorKind.SMS,
            PhoneTarget("+14155550123"),
            _enter_valid_code,
            on_success=enrolled.append,
        )

        assert outcome.succeeded
        assert enrolled == [outcome.value]
        assert refreshed == ["enroll_phone"]

    @pytest.mark.asyncio
    async def test_overview(
        self, sdk: EnrollmentComponents, api_client: FakeMyAccountClient
    ) -> None:
        api_client.add_method(_method("totp|dev_1", FactorKind.TOTP))

        outcome = await sdk.overview([FactorKind.TOTP, FactorKind.EMAIL])

        assert outcome.value is not None
        assert [(o.kind, o.enrolled) for o in outcome.value] == [
            (FactorKind.TOTP, True),
            (FactorKind.EMAIL, False),
        ]

    @pytest.mark.asyncio
    async def test_list_factors(self, sdk: EnrollmentComponents) -> None:
        outcome = await sdk.list_factors()

        assert outcome.value is not None
        assert {f.kind for f in outcome.value} == set(FactorKind)
