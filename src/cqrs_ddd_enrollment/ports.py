"""Ports consumed by the enrollment core.

The core never talks to a transport, a browser or a platform
authenticator directly; it goes through these protocols so adapters can be
swapped (httpx-backed clients in production, fakes in tests).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import (
        ApiCredentials,
        AuthenticationMethod,
        Credentials,
        EmailEnrollmentChallenge,
        Factor,
        NewPasskey,
        PasskeyAuthenticationMethod,
        PasskeyEnrollmentChallenge,
        PhoneEnrollmentChallenge,
        PreferredAuthenticationMethod,
        PushEnrollmentChallenge,
        RecoveryCodeEnrollmentChallenge,
        TotpEnrollmentChallenge,
    )
    from .recovery import RefreshEvent


@runtime_checkable
class ICredentialProvider(Protocol):
    """Source of session and audience-bound API credentials.

    Implementations own the credential cache. Reads for any audience may
    happen concurrently; a store for an audience must be visible to every
    later fetch for that audience.
    """

    async def fetch_credentials(self) -> Credentials:
        """Return the current session credentials.

        Raises:
            CredentialsError: If no usable session exists.
        """
        ...

    async def fetch_api_credentials(
        self,
        audience: str,
        scope: str,
    ) -> ApiCredentials:
        """Return a credential authorized for ``audience`` and ``scope``.

        Raises:
            CredentialsError: With ``code="mfa_required"`` when the session
                cannot satisfy the scope without step-up authentication.
        """
        ...

    async def store_api_credentials(
        self,
        credentials: ApiCredentials,
        audience: str,
    ) -> None:
        """Persist ``credentials`` for ``audience``, replacing any cached value."""
        ...


@runtime_checkable
class IMyAccountClient(Protocol):
    """Remote procedures of the account-management API.

    Every call takes the bearer token it must be authorized with.
    """

    async def get_authentication_methods(
        self, token: str
    ) -> list[AuthenticationMethod]: ...

    async def get_factors(self, token: str) -> list[Factor]: ...

    async def delete_authentication_method(self, token: str, method_id: str) -> None: ...

    async def enroll_email(
        self, token: str, email: str
    ) -> EmailEnrollmentChallenge: ...

    async def enroll_phone(
        self,
        token: str,
        phone_number: str,
        preferred_authentication_method: PreferredAuthenticationMethod,
    ) -> PhoneEnrollmentChallenge: ...

    async def enroll_totp(self, token: str) -> TotpEnrollmentChallenge: ...

    async def enroll_push_notification(self, token: str) -> PushEnrollmentChallenge: ...

    async def enroll_recovery_code(
        self, token: str
    ) -> RecoveryCodeEnrollmentChallenge: ...

    async def passkey_enrollment_challenge(
        self,
        token: str,
        *,
        user_identity_id: str | None = None,
        connection: str | None = None,
    ) -> PasskeyEnrollmentChallenge: ...

    async def confirm_enrollment(
        self,
        token: str,
        authentication_id: str,
        authentication_session: str,
        otp_code: str | None = None,
    ) -> AuthenticationMethod:
        """Confirm an email, phone, TOTP, push or recovery-code enrollment."""
        ...

    async def confirm_passkey_enrollment(
        self,
        token: str,
        challenge: PasskeyEnrollmentChallenge,
        passkey: NewPasskey,
    ) -> PasskeyAuthenticationMethod: ...


@runtime_checkable
class IInteractiveLogin(Protocol):
    """Interactive (browser) login used for step-up authentication."""

    async def login(self, *, audience: str, scope: str) -> Credentials:
        """Authenticate the user for ``audience`` and ``scope``.

        Raises:
            LoginCancelledError: If the user dismissed the flow.
            InteractiveLoginError: If the flow failed.
        """
        ...


@runtime_checkable
class IBrowser(Protocol):
    """Opens an authorization URL and waits for the redirect."""

    async def authorize(self, url: str, callback_url: str) -> str:
        """Return the full callback URL the browser was redirected to.

        Raises:
            LoginCancelledError: If the user closed the browser.
        """
        ...


@runtime_checkable
class IPasskeyCreator(Protocol):
    """Platform capability that creates a passkey for a challenge."""

    async def create(self, challenge: PasskeyEnrollmentChallenge) -> NewPasskey:
        """Create a passkey.

        Raises:
            PasskeyCancelledError: If the user dismissed the prompt.
        """
        ...


@runtime_checkable
class IRefreshObserver(Protocol):
    """Notified when a remote operation succeeded and derived state is stale."""

    def on_refresh(self, event: RefreshEvent) -> None: ...


__all__: list[str] = [
    "ICredentialProvider",
    "IMyAccountClient",
    "IInteractiveLogin",
    "IBrowser",
    "IPasskeyCreator",
    "IRefreshObserver",
]
