"""Enrollment-related exceptions.

All enrollment errors inherit from EnrollmentError. Failures raised at the
remote boundary (account-management API, credential provider, transport)
derive from RemoteError so that callers can tell them apart from local
validation and challenge bookkeeping errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from .classifier import ErrorKind

# ═══════════════════════════════════════════════════════════════
# BASE ENROLLMENT ERROR
# ═══════════════════════════════════════════════════════════════


class EnrollmentError(Exception):
    """Base class for all enrollment errors."""


class ConfigurationError(EnrollmentError, ValueError):
    """Raised when the SDK configuration is missing or invalid."""


# ═══════════════════════════════════════════════════════════════
# REMOTE BOUNDARY ERRORS
# ═══════════════════════════════════════════════════════════════


class RemoteError(EnrollmentError):
    """Base class for failures surfaced by a remote call."""


class TransportError(RemoteError):
    """Raised when the request never produced a response.

    Examples:
        - Connection refused or reset
        - DNS resolution failure
        - Read or connect timeout
    """


class DecodeError(RemoteError):
    """Raised when a response body cannot be decoded into the expected model."""


class CredentialsError(RemoteError):
    """Raised when an API credential cannot be obtained.

    Attributes:
        code: OAuth2 error code reported by the authorization server
            (``mfa_required``, ``login_required``, ``invalid_grant``, ...).
        status_code: HTTP status of the token endpoint response, if any.
    """

    def __init__(
        self,
        message: str = "Failed to obtain API credentials",
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    @property
    def is_network_failure(self) -> bool:
        return isinstance(self.__cause__, (TransportError, httpx.TransportError))


class MyAccountApiError(RemoteError):
    """Raised when the account-management API answers with an error status.

    Attributes:
        status_code: HTTP status code of the response.
        code: Machine-readable error code (problem ``type`` or OAuth ``error``).
        title: Short problem title.
        detail: Human-readable detail supplied by the server.
        validation_errors: Field-level errors (``field``, ``detail``, ``pointer``).
        operation: Name of the failed call when the caller tagged it, e.g.
            ``"confirm"`` for enrollment confirmation.
    """

    def __init__(
        self,
        status_code: int,
        *,
        code: str | None = None,
        title: str | None = None,
        detail: str | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
        operation: str | None = None,
    ) -> None:
        message = detail or title or code or f"HTTP {status_code}"
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.title = title
        self.detail = detail
        self.validation_errors = validation_errors or []
        self.operation = operation

    @property
    def message(self) -> str:
        return str(self)

    @classmethod
    def from_response(cls, status_code: int, body: Any) -> MyAccountApiError:
        """Build an error from a decoded problem+json or OAuth2 error body.

        Args:
            status_code: HTTP status code.
            body: Decoded JSON body, or None if the body was empty or not JSON.

        Returns:
            The populated error.
        """
        if not isinstance(body, dict):
            return cls(status_code)

        code = body.get("type") or body.get("error") or body.get("code")
        detail = (
            body.get("detail")
            or body.get("error_description")
            or body.get("message")
        )
        raw_errors = body.get("validation_errors") or []
        validation_errors = [e for e in raw_errors if isinstance(e, dict)]
        return cls(
            status_code,
            code=code if isinstance(code, str) else None,
            title=body.get("title"),
            detail=detail if isinstance(detail, str) else None,
            validation_errors=validation_errors,
        )


# ═══════════════════════════════════════════════════════════════
# LOCAL ENROLLMENT ERRORS
# ═══════════════════════════════════════════════════════════════


class InvalidEnrollmentInputError(EnrollmentError):
    """Raised when an enrollment payload or proof is rejected before sending.

    Attributes:
        field: Name of the offending field, if known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ChallengeError(EnrollmentError):
    """Base class for enrollment challenge misuse."""


class ChallengeMismatchError(ChallengeError):
    """Raised when a confirm call carries a challenge or proof it was not issued for."""


class ChallengeConsumedError(ChallengeError):
    """Raised when a challenge is confirmed a second time.

    Challenges are single-use: a new ``start`` call is required.
    """


# ═══════════════════════════════════════════════════════════════
# INTERACTIVE FLOW ERRORS
# ═══════════════════════════════════════════════════════════════


class InteractiveLoginError(EnrollmentError):
    """Raised when the interactive step-up login fails.

    Attributes:
        code: OAuth2 error code from the callback or token response.
    """

    def __init__(
        self,
        message: str = "Interactive login failed",
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code


class LoginCancelledError(InteractiveLoginError):
    """Raised when the user dismisses the interactive login."""

    def __init__(self, message: str = "Login was cancelled by the user") -> None:
        super().__init__(message, code="user_cancelled")


class PasskeyCreationError(EnrollmentError):
    """Raised when the platform fails to create a passkey."""


class PasskeyCancelledError(PasskeyCreationError):
    """Raised when the user dismisses the platform passkey prompt."""


class StepUpError(EnrollmentError):
    """Raised when step-up authentication could not upgrade the session.

    Attributes:
        kind: Classified kind of the underlying failure.
    """

    def __init__(self, message: str, kind: ErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


__all__: list[str] = [
    "EnrollmentError",
    "ConfigurationError",
    "RemoteError",
    "TransportError",
    "DecodeError",
    "CredentialsError",
    "MyAccountApiError",
    "InvalidEnrollmentInputError",
    "ChallengeError",
    "ChallengeMismatchError",
    "ChallengeConsumedError",
    "InteractiveLoginError",
    "LoginCancelledError",
    "PasskeyCreationError",
    "PasskeyCancelledError",
    "StepUpError",
]
