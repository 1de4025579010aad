"""Two-phase factor enrollment.

Every factor is enrolled with the same protocol:

1. ``start`` asks the account-management API for an enrollment challenge
   (and makes it send an email/SMS code, or allocate a TOTP secret, a
   push binding, a passkey creation challenge or a recovery code).
2. ``confirm`` hands the challenge back together with the user's proof
   (OTP code, platform-created passkey, or nothing).

A single FactorEnrollmentOperation class serves all six factor kinds; the
factor-specific inputs are small payload and proof value types.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union, cast

from .exceptions import (
    ChallengeConsumedError,
    ChallengeMismatchError,
    DecodeError,
    InvalidEnrollmentInputError,
    MyAccountApiError,
)
from .models import (
    CHALLENGE_TYPES,
    CREATE_AUTHENTICATION_METHODS,
    AuthenticationMethod,
    EnrollmentChallenge,
    FactorKind,
    NewPasskey,
    PasskeyEnrollmentChallenge,
    PreferredAuthenticationMethod,
    ScopedAudience,
)
from .observability.metrics import EnrollmentMetrics

if TYPE_CHECKING:
    from .config import EnrollmentConfig
    from .ports import ICredentialProvider, IMyAccountClient

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")

# Spent challenge keys remembered per operation
CONSUMED_CHALLENGE_CAPACITY = 64

# ═══════════════════════════════════════════════════════════════
# PAYLOADS AND PROOFS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EmailTarget:
    """Email address to send the enrollment code to."""

    email: str

    def __post_init__(self) -> None:
        email = self.email.strip()
        if not _EMAIL_RE.match(email):
            raise InvalidEnrollmentInputError("Invalid email address", field="email")
        object.__setattr__(self, "email", email)


@dataclass(frozen=True)
class PhoneTarget:
    """E.164 phone number and the channel the code is delivered on."""

    phone_number: str
    preferred_authentication_method: PreferredAuthenticationMethod = (
        PreferredAuthenticationMethod.SMS
    )

    def __post_init__(self) -> None:
        number = self.phone_number.strip()
        if not _E164_RE.match(number):
            raise InvalidEnrollmentInputError(
                "Phone number must be in E.164 format, e.g. +14155550123",
                field="phone_number",
            )
        object.__setattr__(self, "phone_number", number)


@dataclass(frozen=True)
class PasskeyHints:
    """Optional identity hints for passkey enrollment."""

    user_identity_id: str | None = None
    connection: str | None = None


@dataclass(frozen=True)
class OtpProof:
    """One-time code typed by the user."""

    code: str = field(repr=False)

    def __post_init__(self) -> None:
        code = self.code.strip()
        if not code or any(c.isspace() for c in code):
            raise InvalidEnrollmentInputError("Passcode must not be empty", field="code")
        object.__setattr__(self, "code", code)


EnrollmentPayload = Union[EmailTarget, PhoneTarget, PasskeyHints, None]
EnrollmentProof = Union[OtpProof, NewPasskey, None]
ProofProvider = Callable[[EnrollmentChallenge], Awaitable[EnrollmentProof]]


def compose_phone_number(country_code: str, number: str) -> str:
    """Build an E.164 number from a country calling code and a local number.

    Args:
        country_code: Calling code with or without ``+`` (``"+44"``, ``"1"``).
        number: Local number; spaces, dashes, dots and parentheses are dropped.

    Returns:
        The E.164 number.

    Raises:
        InvalidEnrollmentInputError: If the result is not valid E.164.

    Example:
        ```python
        compose_phone_number("+1", "(415) 555-0123")  # "+14155550123"
        ```
    """
    code = country_code.strip().lstrip("+")
    local = re.sub(r"[\s\-.()]", "", number).lstrip("0")
    return PhoneTarget(phone_number=f"+{code}{local}").phone_number


# ═══════════════════════════════════════════════════════════════
# OPERATION
# ═══════════════════════════════════════════════════════════════


class FactorEnrollmentOperation:
    """Start/confirm enrollment for one factor kind.

    A fresh API credential is requested before every remote call. Each
    challenge can be confirmed once; it is discarded after the attempt,
    whatever its result. Only the most recent ``consumed_capacity`` spent
    challenges are remembered locally.

    Example:
        ```python
        email = FactorEnrollmentOperation(
            FactorKind.EMAIL,
            client=client,
            credential_provider=provider,
            config=config,
        )
        challenge = await email.start(EmailTarget("user@example.com"))
        method = await email.confirm(challenge, OtpProof("123456"))
        ```
    """

    def __init__(
        self,
        kind: FactorKind,
        *,
        client: IMyAccountClient,
        credential_provider: ICredentialProvider,
        config: EnrollmentConfig,
        consumed_capacity: int = CONSUMED_CHALLENGE_CAPACITY,
    ) -> None:
        if consumed_capacity < 1:
            raise ValueError("consumed_capacity must be >= 1")
        self.kind = kind
        self._client = client
        self._credentials = credential_provider
        self._scoped_audience = ScopedAudience.for_scopes(
            config.audience, CREATE_AUTHENTICATION_METHODS
        )
        self._consumed: OrderedDict[tuple[str, str], None] = OrderedDict()
        self._consumed_capacity = consumed_capacity

    @property
    def scoped_audience(self) -> ScopedAudience:
        return self._scoped_audience

    async def start(
        self,
        payload: EnrollmentPayload = None,
        *,
        scoped_audience: ScopedAudience | None = None,
    ) -> EnrollmentChallenge:
        """Request an enrollment challenge.

        Not idempotent: each call makes the server send a new code or
        allocate a new enrollment session.

        Args:
            payload: EmailTarget, PhoneTarget, PasskeyHints or None.
            scoped_audience: Overrides the default audience/scope.

        Raises:
            InvalidEnrollmentInputError: Wrong payload for this factor.
            RemoteError: The credential fetch or the remote call failed.
        """
        self._check_payload(payload)
        token = await self._fetch_token(scoped_audience)

        with EnrollmentMetrics.operation("start", factor=self.kind.value):
            challenge = await self._dispatch_start(token, payload)

        if not isinstance(challenge, CHALLENGE_TYPES[self.kind]):
            raise DecodeError(
                f"Expected {CHALLENGE_TYPES[self.kind].__name__}, "
                f"got {type(challenge).__name__}"
            )
        logger.info(
            "Started %s enrollment %s", self.kind.value, challenge.authentication_id
        )
        return challenge

    async def confirm(
        self,
        challenge: EnrollmentChallenge,
        proof: EnrollmentProof = None,
        *,
        scoped_audience: ScopedAudience | None = None,
    ) -> AuthenticationMethod:
        """Complete an enrollment.

        Args:
            challenge: Challenge returned by ``start`` on this operation kind.
            proof: OtpProof for email/SMS/TOTP, NewPasskey for passkeys,
                None for push and recovery codes.
            scoped_audience: Overrides the default audience/scope.

        Returns:
            The enrolled method, with ``confirmed=True``.

        Raises:
            ChallengeMismatchError: Challenge of another factor, or a passkey
                created for another challenge.
            ChallengeConsumedError: Challenge already confirmed once.
            InvalidEnrollmentInputError: Missing or wrong proof.
            RemoteError: The credential fetch or the remote call failed.
        """
        key = self._check_challenge(challenge)
        self._check_proof(challenge, proof)
        self._consume(key)

        token = await self._fetch_token(scoped_audience)

        with EnrollmentMetrics.operation("confirm", factor=self.kind.value):
            try:
                method = await self._dispatch_confirm(token, challenge, proof)
            except MyAccountApiError as e:
                if e.operation is None:
                    e.operation = "confirm"
                raise

        if not method.confirmed:
            method = method.model_copy(update={"confirmed": True})
        logger.info("Confirmed %s enrollment as method %s", self.kind.value, method.id)
        return method

    async def enroll(
        self,
        payload: EnrollmentPayload = None,
        proof_provider: ProofProvider | None = None,
        *,
        scoped_audience: ScopedAudience | None = None,
    ) -> AuthenticationMethod:
        """Run start, obtain the proof, then confirm.

        This is the whole logical operation: retrying it after step-up
        restarts from ``start`` with a new challenge.

        Args:
            payload: Start payload.
            proof_provider: Awaited with the challenge; returns the proof
                (e.g. prompts for the OTP, or ``passkey_creator.create``).
            scoped_audience: Overrides the default audience/scope.
        """
        challenge = await self.start(payload, scoped_audience=scoped_audience)
        proof = await proof_provider(challenge) if proof_provider else None
        return await self.confirm(challenge, proof, scoped_audience=scoped_audience)

    def is_consumed(self, challenge: EnrollmentChallenge) -> bool:
        return (
            challenge.authentication_id,
            challenge.authentication_session,
        ) in self._consumed

    # ── helpers ────────────────────────────────────────────────

    def _consume(self, key: tuple[str, str]) -> None:
        self._consumed[key] = None
        while len(self._consumed) > self._consumed_capacity:
            self._consumed.popitem(last=False)

    async def _fetch_token(self, scoped_audience: ScopedAudience | None) -> str:
        target = scoped_audience or self._scoped_audience
        credentials = await self._credentials.fetch_api_credentials(
            target.audience, target.scope
        )
        return credentials.access_token

    def _check_payload(self, payload: EnrollmentPayload) -> None:
        expected: tuple[type, ...]
        if self.kind is FactorKind.EMAIL:
            expected = (EmailTarget,)
        elif self.kind is FactorKind.SMS:
            expected = (PhoneTarget,)
        elif self.kind is FactorKind.PASSKEY:
            expected = (PasskeyHints, type(None))
        else:
            expected = (type(None),)
        if not isinstance(payload, expected):
            raise InvalidEnrollmentInputError(
                f"{type(payload).__name__} is not a valid payload "
                f"for {self.kind.value} enrollment"
            )

    def _check_challenge(self, challenge: EnrollmentChallenge) -> tuple[str, str]:
        if not isinstance(challenge, CHALLENGE_TYPES[self.kind]):
            raise ChallengeMismatchError(
                f"{type(challenge).__name__} cannot confirm "
                f"{self.kind.value} enrollment"
            )
        key = (challenge.authentication_id, challenge.authentication_session)
        if key in self._consumed:
            raise ChallengeConsumedError(
                f"Challenge {challenge.authentication_id} was already used"
            )
        return key

    def _check_proof(
        self, challenge: EnrollmentChallenge, proof: EnrollmentProof
    ) -> None:
        if self.kind.requires_otp:
            if not isinstance(proof, OtpProof):
                raise InvalidEnrollmentInputError("A passcode is required", field="code")
        elif self.kind is FactorKind.PASSKEY:
            if not isinstance(proof, NewPasskey):
                raise InvalidEnrollmentInputError("A new passkey is required")
            expected_challenge = cast(PasskeyEnrollmentChallenge, challenge).challenge
            if proof.bound_challenge() != expected_challenge:
                raise ChallengeMismatchError(
                    "Passkey was created for a different challenge"
                )
        elif proof is not None:
            raise InvalidEnrollmentInputError(
                f"{self.kind.value} enrollment takes no proof"
            )

    async def _dispatch_start(
        self, token: str, payload: EnrollmentPayload
    ) -> EnrollmentChallenge:
        client = self._client
        if isinstance(payload, EmailTarget):
            return await client.enroll_email(token, payload.email)
        if isinstance(payload, PhoneTarget):
            return await client.enroll_phone(
                token, payload.phone_number, payload.preferred_authentication_method
            )
        if self.kind is FactorKind.PASSKEY:
            hints = payload or PasskeyHints()
            return await client.passkey_enrollment_challenge(
                token,
                user_identity_id=hints.user_identity_id,
                connection=hints.connection,
            )
        if self.kind is FactorKind.TOTP:
            return await client.enroll_totp(token)
        if self.kind is FactorKind.PUSH:
            return await client.enroll_push_notification(token)
        return await client.enroll_recovery_code(token)

    async def _dispatch_confirm(
        self,
        token: str,
        challenge: EnrollmentChallenge,
        proof: EnrollmentProof,
    ) -> AuthenticationMethod:
        if isinstance(proof, NewPasskey):
            return await self._client.confirm_passkey_enrollment(
                token, cast(PasskeyEnrollmentChallenge, challenge), proof
            )
        return await self._client.confirm_enrollment(
            token,
            challenge.authentication_id,
            challenge.authentication_session,
            otp_code=proof.code if isinstance(proof, OtpProof) else None,
        )


__all__: list[str] = [
    "EmailTarget",
    "PhoneTarget",
    "PasskeyHints",
    "OtpProof",
    "EnrollmentPayload",
    "EnrollmentProof",
    "ProofProvider",
    "compose_phone_number",
    "FactorEnrollmentOperation",
]
