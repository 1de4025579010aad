"""Test configuration and fixtures."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from cqrs_ddd_enrollment import (
    ApiCredentials,
    AuthenticationMethod,
    Credentials,
    CredentialsError,
    EmailEnrollmentChallenge,
    EnrollmentConfig,
    Factor,
    FactorKind,
    MyAccountApiError,
    NewPasskey,
    PasskeyAuthenticationMethod,
    PasskeyEnrollmentChallenge,
    PhoneEnrollmentChallenge,
    PreferredAuthenticationMethod,
    PushEnrollmentChallenge,
    RecoveryCodeEnrollmentChallenge,
    RecoveryOrchestrator,
    StepUpAuthenticator,
    TotpEnrollmentChallenge,
)
from cqrs_ddd_enrollment.models import EnrollmentChallenge

DOMAIN = "tenant.example.com"
AUDIENCE = f"https://{DOMAIN}/me/"
VALID_OTP = "123456"
RECOVERY_CODE = "RC7K-2X9Q-PL4M-8ZTW"


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests that require external services",
    )


def mfa_required() -> CredentialsError:
    return CredentialsError("Multifactor authentication required", code="mfa_required")


def in_one_hour() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)


# ═══════════════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════════════


class FakeMyAccountClient:
    """In-memory account-management API.

    Confirm calls must carry the exact id/session pair issued by the
    matching start call. Errors can be queued per call name.
    """

    def __init__(self) -> None:
        self.methods: dict[str, AuthenticationMethod] = {}
        self.pending: dict[str, tuple[str, FactorKind, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.factors = [Factor(type=kind.value) for kind in FactorKind]
        self.passkey_hints: list[tuple[str | None, str | None]] = []
        self._ids = itertools.count(1)

    def fail_next(self, name: str, *errors: BaseException) -> None:
        self.failures.setdefault(name, []).extend(errors)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def add_method(self, method: AuthenticationMethod) -> None:
        self.methods[method.id] = method

    def _record(self, name: str, token: str) -> None:
        self.calls.append((name, token))
        queued = self.failures.get(name)
        if queued:
            raise queued.pop(0)

    def _issue(
        self, model: type[EnrollmentChallenge], kind: FactorKind, **extra: Any
    ) -> Any:
        n = next(self._ids)
        authentication_id = f"{kind.value}|dev_{n}"
        session = f"session-{n}"
        self.pending[authentication_id] = (session, kind, extra)
        return model(
            authentication_id=authentication_id,
            authentication_session=session,
            **extra,
        )

    def _consume(
        self, authentication_id: str, authentication_session: str
    ) -> tuple[FactorKind, dict[str, Any]]:
        pending = self.pending.get(authentication_id)
        if pending is None or pending[0] != authentication_session:
            raise MyAccountApiError(
                400,
                title="Bad Request",
                detail="The authentication session has expired",
            )
        del self.pending[authentication_id]
        return pending[1], pending[2]

    async def get_authentication_methods(self, token: str) -> list[AuthenticationMethod]:
        self._record("get_authentication_methods", token)
        return list(self.methods.values())

    async def get_factors(self, token: str) -> list[Factor]:
        self._record("get_factors", token)
        return list(self.factors)

    async def delete_authentication_method(self, token: str, method_id: str) -> None:
        self._record("delete_authentication_method", token)
        if method_id not in self.methods:
            raise MyAccountApiError(404, detail="Authentication method not found")
        del self.methods[method_id]

    async def enroll_email(self, token: str, email: str) -> EmailEnrollmentChallenge:
        self._record("enroll_email", token)
        return self._issue(EmailEnrollmentChallenge, FactorKind.EMAIL)

    async def enroll_phone(
        self,
        token: str,
        phone_number: str,
        preferred_authentication_method: PreferredAuthenticationMethod,
    ) -> PhoneEnrollmentChallenge:
        self._record("enroll_phone", token)
        return self._issue(PhoneEnrollmentChallenge, FactorKind.SMS)

    async def enroll_totp(self, token: str) -> TotpEnrollmentChallenge:
        self._record("enroll_totp", token)
        return self._issue(
            TotpEnrollmentChallenge,
            FactorKind.TOTP,
            barcode_uri="otpauth://totp/Tenant:user?secret=JBSWY3DPEHPK3PXP",
            manual_input_code="JBSWY3DPEHPK3PXP",
        )

    async def enroll_push_notification(self, token: str) -> PushEnrollmentChallenge:
        self._record("enroll_push_notification", token)
        return self._issue(
            PushEnrollmentChallenge,
            FactorKind.PUSH,
            barcode_uri="otpauth://push?enrollment_tx_id=abc",
        )

    async def enroll_recovery_code(self, token: str) -> RecoveryCodeEnrollmentChallenge:
        self._record("enroll_recovery_code", token)
        return self._issue(
            RecoveryCodeEnrollmentChallenge,
            FactorKind.RECOVERY_CODE,
            recovery_code=RECOVERY_CODE,
        )

    async def passkey_enrollment_challenge(
        self,
        token: str,
        *,
        user_identity_id: str | None = None,
        connection: str | None = None,
    ) -> PasskeyEnrollmentChallenge:
        self._record("passkey_enrollment_challenge", token)
        self.passkey_hints.append((user_identity_id, connection))
        n = next(self._ids)
        authentication_id = f"passkey|dev_{n}"
        session = f"session-{n}"
        self.pending[authentication_id] = (session, FactorKind.PASSKEY, {})
        return PasskeyEnrollmentChallenge(
            authentication_id=authentication_id,
            authentication_session=session,
            relying_party_id=DOMAIN,
            user_id="dXNlci0x",
            user_name="user@example.com",
            challenge=f"Y2hhbGxlbmdl{n}",
        )

    async def confirm_enrollment(
        self,
        token: str,
        authentication_id: str,
        authentication_session: str,
        otp_code: str | None = None,
    ) -> AuthenticationMethod:
        self._record("confirm_enrollment", token)
        pending = self.pending.get(authentication_id)
        if pending is not None and pending[0] == authentication_session:
            kind = pending[1]
            if kind.requires_otp and otp_code != VALID_OTP:
                del self.pending[authentication_id]
                raise MyAccountApiError(
                    400, title="Bad Request", detail="The OTP code is invalid"
                )
        kind, _ = self._consume(authentication_id, authentication_session)
        method = AuthenticationMethod(
            id=authentication_id,
            type=kind.value,
            confirmed=True,
            created_at=datetime.now(timezone.utc),
        )
        self.methods[method.id] = method
        return method

    async def confirm_passkey_enrollment(
        self,
        token: str,
        challenge: PasskeyEnrollmentChallenge,
        passkey: NewPasskey,
    ) -> PasskeyAuthenticationMethod:
        self._record("confirm_passkey_enrollment", token)
        self._consume(challenge.authentication_id, challenge.authentication_session)
        method = PasskeyAuthenticationMethod(
            id=challenge.authentication_id,
            confirmed=True,
            key_id=passkey.credential_id,
            created_at=datetime.now(timezone.utc),
        )
        self.methods[method.id] = method
        return method


class FakeCredentialProvider:
    """Mints a distinct token per fetch and serves stored credentials.

    Queued failures are raised by the next fetches, one per call.
    """

    def __init__(self) -> None:
        self.stored: dict[str, ApiCredentials] = {}
        self.fetches: list[tuple[str, str]] = []
        self.failures: list[BaseException] = []
        self._tokens = itertools.count(1)

    async def fetch_credentials(self) -> Credentials:
        return Credentials(access_token="session-token", expires_at=in_one_hour())

    async def fetch_api_credentials(self, audience: str, scope: str) -> ApiCredentials:
        self.fetches.append((audience, scope))
        if self.failures:
            raise self.failures.pop(0)
        stored = self.stored.get(audience)
        if stored is not None and stored.covers(scope):
            return stored
        return ApiCredentials(
            access_token=f"token-{next(self._tokens)}",
            expires_at=in_one_hour(),
            scope=scope,
        )

    async def store_api_credentials(
        self, credentials: ApiCredentials, audience: str
    ) -> None:
        self.stored[audience] = credentials


class FakeInteractiveLogin:
    """Interactive login that succeeds, or raises ``error``."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def login(self, *, audience: str, scope: str) -> Credentials:
        self.calls.append((audience, scope))
        if self.error is not None:
            raise self.error
        return Credentials(
            access_token=f"upgraded-token-{len(self.calls)}",
            expires_at=in_one_hour(),
            scope=scope,
        )


# ═══════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════


@pytest.fixture
def config() -> EnrollmentConfig:
    return EnrollmentConfig(
        domain=DOMAIN,
        client_id="client-123",
        redirect_uri="com.example.app://callback",
    )


@pytest.fixture
def api_client() -> FakeMyAccountClient:
    return FakeMyAccountClient()


@pytest.fixture
def credential_provider() -> FakeCredentialProvider:
    return FakeCredentialProvider()


@pytest.fixture
def interactive_login() -> FakeInteractiveLogin:
    return FakeInteractiveLogin()


@pytest.fixture
def step_up(
    interactive_login: FakeInteractiveLogin,
    credential_provider: FakeCredentialProvider,
) -> StepUpAuthenticator:
    return StepUpAuthenticator(interactive_login, credential_provider)


@pytest.fixture
def orchestrator(step_up: StepUpAuthenticator) -> RecoveryOrchestrator:
    return RecoveryOrchestrator(step_up, max_step_ups=1)
