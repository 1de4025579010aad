"""Error taxonomy and classification.

Every failure that reaches the recovery layer is mapped to exactly one
ErrorKind. Classification is total: it never raises, and anything not
recognised becomes ``ErrorKind.UNKNOWN``.

Structured error codes are preferred. When an enrollment confirmation is
rejected with free text only, the message is inspected for the words
"invalid"/"incorrect", "expired" and "rate" as a best-effort fallback; the
wording is not a stable contract of the API. Other calls report the
server detail as ``unknown``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

import httpx
import pydantic

from .exceptions import (
    ChallengeConsumedError,
    ChallengeMismatchError,
    CredentialsError,
    DecodeError,
    InteractiveLoginError,
    InvalidEnrollmentInputError,
    LoginCancelledError,
    MyAccountApiError,
    PasskeyCancelledError,
    PasskeyCreationError,
    StepUpError,
    TransportError,
)

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Classified kind of a remote or interactive failure."""

    NETWORK = "network"
    UNAUTHORIZED = "unauthorized"
    MFA_REQUIRED = "mfa_required"
    FORBIDDEN = "forbidden"
    INVALID_INPUT = "invalid_input"
    EXPIRED = "expired"
    RATE_LIMITED = "rate_limited"
    DECODE_FAILURE = "decode_failure"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "Please check your internet connection",
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please login again to continue.",
    ErrorKind.MFA_REQUIRED: "Additional authentication is required",
    ErrorKind.FORBIDDEN: "You are not allowed to perform this action",
    ErrorKind.INVALID_INPUT: "The information you entered is invalid",
    ErrorKind.EXPIRED: "Passcode expired. Please request a new one.",
    ErrorKind.RATE_LIMITED: "Too many attempts. Please try again later.",
    ErrorKind.DECODE_FAILURE: "Received an unexpected response from the server",
    ErrorKind.CANCELLED: "The operation was cancelled",
    ErrorKind.UNKNOWN: "Something went wrong",
}

INVALID_PASSCODE_MESSAGE = "Invalid passcode. Please try again."
EXPIRED_PASSCODE_MESSAGE = DEFAULT_MESSAGES[ErrorKind.EXPIRED]
RATE_LIMITED_MESSAGE = DEFAULT_MESSAGES[ErrorKind.RATE_LIMITED]
SERVER_ERROR_MESSAGE = "Server error, please try again"

# ═══════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════

MFA_REQUIRED_CODES = frozenset({"mfa_required", "insufficient_user_authentication"})

UNAUTHORIZED_CODES = frozenset(
    {
        "login_required",
        "invalid_grant",
        "expired_token",
        "invalid_token",
        "unauthorized",
        "refresh_token_invalid",
        "refresh_token_deleted",
    }
)

FORBIDDEN_CODES = frozenset(
    {
        "access_denied",
        "insufficient_scope",
        "mfa_registration_required",
        "unauthorized_client",
        "consent_required",
    }
)

RATE_LIMITED_CODES = frozenset(
    {"too_many_attempts", "too_many_requests", "rate_limited"}
)

INVALID_INPUT_CODES = frozenset(
    {"invalid_grant", "invalid_otp", "invalid_code", "invalid_mfa_code"}
)

EXPIRED_CODES = frozenset(
    {"expired_code", "expired_otp", "expired_session", "invalid_mfa_token"}
)

# Calls whose free-text rejections describe the submitted passcode
PASSCODE_OPERATIONS = frozenset({"confirm"})

_INVALID_WORDS = re.compile(r"\b(?:invalid|incorrect)\b")
_EXPIRED_WORDS = re.compile(r"\bexpired\b")
_RATE_WORDS = re.compile(r"\brate\b")


def _normalize_code(code: str | None) -> str:
    """Lowercase a code, keeping the last path segment of problem type URIs."""
    if not code:
        return ""
    return code.rstrip("/").rsplit("/", 1)[-1].strip().lower()


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying one failure.

    Attributes:
        kind: The error kind.
        message: Human-readable message safe to show to the user.
        code: Normalized machine-readable code, if the failure carried one.
        cause: The original exception.
    """

    kind: ErrorKind
    message: str
    code: str | None = None
    cause: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def requires_step_up(self) -> bool:
        return self.kind is ErrorKind.MFA_REQUIRED


class ErrorClassifier:
    """Maps exceptions from the remote boundary to ErrorKinds.

    Example:
        ```python
        classified = ErrorClassifier().classify(error)
        if classified.requires_step_up:
            ...
        ```
    """

    def classify(self, error: BaseException) -> ClassifiedError:
        """Classify ``error``. Never raises."""
        try:
            return self._classify(error)
        except Exception:
            logger.warning(
                "Failed to classify %s, treating as unknown",
                type(error).__name__,
                exc_info=True,
            )
            return self._of(ErrorKind.UNKNOWN, error)

    def _classify(self, error: BaseException) -> ClassifiedError:
        if isinstance(error, StepUpError):
            return self._of(error.kind, error, str(error) or None)
        if isinstance(
            error, (LoginCancelledError, PasskeyCancelledError, asyncio.CancelledError)
        ):
            return self._of(ErrorKind.CANCELLED, error)
        if isinstance(error, CredentialsError):
            return self._classify_credentials(error)
        if isinstance(error, MyAccountApiError):
            return self._classify_api(error)
        if isinstance(error, InteractiveLoginError):
            return self._classify_login(error)
        if isinstance(error, (TransportError, httpx.TransportError)):
            return self._of(ErrorKind.NETWORK, error)
        if isinstance(
            error, (DecodeError, pydantic.ValidationError, json.JSONDecodeError)
        ):
            return self._of(ErrorKind.DECODE_FAILURE, error)
        if isinstance(error, (InvalidEnrollmentInputError, ChallengeMismatchError)):
            return self._of(ErrorKind.INVALID_INPUT, error, str(error))
        if isinstance(error, ChallengeConsumedError):
            return self._of(ErrorKind.EXPIRED, error)
        if isinstance(error, PasskeyCreationError):
            return self._of(ErrorKind.UNKNOWN, error, str(error) or None)
        return self._of(ErrorKind.UNKNOWN, error)

    def _classify_credentials(self, error: CredentialsError) -> ClassifiedError:
        code = _normalize_code(error.code)
        if code in MFA_REQUIRED_CODES:
            return self._of(ErrorKind.MFA_REQUIRED, error, code=code)
        if error.is_network_failure:
            return self._of(ErrorKind.NETWORK, error, code=code)
        if code in UNAUTHORIZED_CODES or error.status_code == 401:
            return self._of(ErrorKind.UNAUTHORIZED, error, code=code)
        if code in FORBIDDEN_CODES or error.status_code == 403:
            return self._of(ErrorKind.FORBIDDEN, error, code=code)
        if code in RATE_LIMITED_CODES or error.status_code == 429:
            return self._of(ErrorKind.RATE_LIMITED, error, code=code)
        return self._of(ErrorKind.UNKNOWN, error, str(error) or None, code=code)

    def _classify_api(self, error: MyAccountApiError) -> ClassifiedError:
        code = _normalize_code(error.code)
        status = error.status_code

        if code in MFA_REQUIRED_CODES:
            return self._of(ErrorKind.MFA_REQUIRED, error, code=code)
        if status == 429 or code in RATE_LIMITED_CODES:
            return self._of(ErrorKind.RATE_LIMITED, error, RATE_LIMITED_MESSAGE, code)
        if status == 401:
            return self._of(ErrorKind.UNAUTHORIZED, error, code=code)
        if status == 403:
            return self._of(ErrorKind.FORBIDDEN, error, error.detail, code)
        if error.validation_errors:
            return self._of(
                ErrorKind.INVALID_INPUT,
                error,
                error.detail or _first_validation_detail(error),
                code,
            )
        if code in INVALID_INPUT_CODES:
            return self._of(ErrorKind.INVALID_INPUT, error, INVALID_PASSCODE_MESSAGE, code)
        if code in EXPIRED_CODES:
            return self._of(ErrorKind.EXPIRED, error, EXPIRED_PASSCODE_MESSAGE, code)
        if status >= 500:
            return self._of(ErrorKind.UNKNOWN, error, SERVER_ERROR_MESSAGE, code)

        if error.operation in PASSCODE_OPERATIONS:
            text = " ".join(filter(None, (error.detail, error.title))).lower()
            if _INVALID_WORDS.search(text):
                return self._of(
                    ErrorKind.INVALID_INPUT, error, INVALID_PASSCODE_MESSAGE, code
                )
            if _EXPIRED_WORDS.search(text):
                return self._of(
                    ErrorKind.EXPIRED, error, EXPIRED_PASSCODE_MESSAGE, code
                )
            if _RATE_WORDS.search(text):
                return self._of(
                    ErrorKind.RATE_LIMITED, error, RATE_LIMITED_MESSAGE, code
                )

        return self._of(ErrorKind.UNKNOWN, error, error.detail or error.title, code)

    def _classify_login(self, error: InteractiveLoginError) -> ClassifiedError:
        code = _normalize_code(error.code)
        if isinstance(error.__cause__, (TransportError, httpx.TransportError)):
            return self._of(ErrorKind.NETWORK, error, code=code)
        if code in FORBIDDEN_CODES:
            return self._of(ErrorKind.FORBIDDEN, error, str(error), code)
        return self._of(ErrorKind.UNKNOWN, error, str(error) or None, code)

    @staticmethod
    def _of(
        kind: ErrorKind,
        error: BaseException,
        message: str | None = None,
        code: str | None = None,
    ) -> ClassifiedError:
        return ClassifiedError(
            kind=kind,
            message=message or DEFAULT_MESSAGES[kind],
            code=code or None,
            cause=error,
        )


def _first_validation_detail(error: MyAccountApiError) -> str | None:
    for item in error.validation_errors:
        detail = item.get("detail")
        if isinstance(detail, str) and detail:
            field_name = item.get("field") or item.get("pointer")
            return f"{field_name}: {detail}" if field_name else detail
    return None


__all__: list[str] = [
    "ErrorKind",
    "ClassifiedError",
    "ErrorClassifier",
    "DEFAULT_MESSAGES",
    "INVALID_PASSCODE_MESSAGE",
    "EXPIRED_PASSCODE_MESSAGE",
    "RATE_LIMITED_MESSAGE",
    "SERVER_ERROR_MESSAGE",
    "PASSCODE_OPERATIONS",
]
