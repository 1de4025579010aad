"""Enrollment data model.

Value types shared by every enrollment flow: scoped audiences, credentials,
factor kinds, the per-factor enrollment challenges returned by ``start``
calls and the authentication methods returned by ``confirm`` and list calls.

Wire models are immutable pydantic models; a payload that does not
validate is reported as a decode failure by the transport adapter.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from .exceptions import DecodeError, InvalidEnrollmentInputError

# ═══════════════════════════════════════════════════════════════
# SCOPES
# ═══════════════════════════════════════════════════════════════

OPENID = "openid"
READ_AUTHENTICATION_METHODS = "read:me:authentication_methods"
DELETE_AUTHENTICATION_METHODS = "delete:me:authentication_methods"
CREATE_AUTHENTICATION_METHODS = "create:me:authentication_methods"
READ_FACTORS = "read:me:factors"

DEFAULT_EXPIRES_IN = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ScopedAudience:
    """The (audience, scope) pair an API credential must be authorized for.

    The scope always contains ``openid``; duplicates are dropped and the
    original order is kept.

    Attributes:
        audience: API identifier.
        scope: Space-delimited scope string.

    Example:
        ```python
        target = ScopedAudience.for_scopes(
            "https://tenant.auth0.com/me/", CREATE_AUTHENTICATION_METHODS
        )
        target.scope  # "openid create:me:authentication_methods"
        ```
    """

    audience: str
    scope: str = OPENID

    def __post_init__(self) -> None:
        object.__setattr__(self, "scope", _normalize_scope(self.scope))

    @classmethod
    def for_scopes(cls, audience: str, *scopes: str) -> ScopedAudience:
        return cls(audience=audience, scope=" ".join(scopes))

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(self.scope.split())

    def includes(self, scope: str) -> bool:
        """Return True if every scope in ``scope`` is part of this pair."""
        return set(scope.split()) <= set(self.scopes)


def _normalize_scope(scope: str) -> str:
    ordered = [OPENID]
    for part in scope.split():
        if part not in ordered:
            ordered.append(part)
    return " ".join(ordered)


# ═══════════════════════════════════════════════════════════════
# CREDENTIALS
# ═══════════════════════════════════════════════════════════════


def _expires_at(data: Mapping[str, Any], now: datetime | None) -> datetime:
    try:
        expires_in = int(data.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid expires_in: {data.get('expires_in')!r}") from e
    return (now or _utcnow()) + timedelta(seconds=expires_in)


@dataclass(frozen=True)
class Credentials:
    """Session credentials returned by an interactive login or refresh.

    Token values are excluded from the repr so they never end up in logs.
    """

    access_token: str = field(repr=False)
    expires_at: datetime
    token_type: str = "Bearer"
    scope: str = ""
    id_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)

    @classmethod
    def from_token_response(
        cls,
        data: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> Credentials:
        """Build credentials from an OAuth2 token endpoint response.

        Raises:
            DecodeError: If the response has no access token.
        """
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise DecodeError("Token response does not contain an access_token")
        return cls(
            access_token=access_token,
            expires_at=_expires_at(data, now),
            token_type=str(data.get("token_type") or "Bearer"),
            scope=str(data.get("scope") or ""),
            id_token=data.get("id_token"),
            refresh_token=data.get("refresh_token"),
        )


@dataclass(frozen=True)
class ApiCredentials:
    """Short-lived credential bound to one audience and scope.

    Attributes:
        access_token: Bearer token for the API.
        token_type: Token type, normally ``Bearer``.
        expires_at: Expiry instant (timezone-aware, UTC).
        scope: Granted scope, space-delimited.
    """

    access_token: str = field(repr=False)
    expires_at: datetime
    token_type: str = "Bearer"
    scope: str = ""

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"

    def is_expired(
        self,
        leeway: timedelta = timedelta(seconds=30),
        *,
        now: datetime | None = None,
    ) -> bool:
        return (now or _utcnow()) + leeway >= self.expires_at

    def covers(self, scope: str) -> bool:
        """Return True if the granted scope includes every scope in ``scope``."""
        return set(scope.split()) <= set(self.scope.split())

    @classmethod
    def from_token_response(
        cls,
        data: Mapping[str, Any],
        *,
        requested_scope: str = "",
        now: datetime | None = None,
    ) -> ApiCredentials:
        """Build API credentials from an OAuth2 token endpoint response.

        Servers may omit ``scope`` when the granted scope equals the requested
        one, so ``requested_scope`` is used as fallback.

        Raises:
            DecodeError: If the response has no access token.
        """
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise DecodeError("Token response does not contain an access_token")
        return cls(
            access_token=access_token,
            expires_at=_expires_at(data, now),
            token_type=str(data.get("token_type") or "Bearer"),
            scope=str(data.get("scope") or requested_scope),
        )

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> ApiCredentials:
        return cls(
            access_token=credentials.access_token,
            expires_at=credentials.expires_at,
            token_type=credentials.token_type,
            scope=credentials.scope,
        )


# ═══════════════════════════════════════════════════════════════
# FACTOR KINDS
# ═══════════════════════════════════════════════════════════════


class FactorKind(str, Enum):
    """Factor types; values are the account-management API type names."""

    EMAIL = "email"
    SMS = "phone"
    TOTP = "totp"
    PUSH = "push-notification"
    PASSKEY = "passkey"
    RECOVERY_CODE = "recovery-code"

    @property
    def requires_otp(self) -> bool:
        return self in (FactorKind.EMAIL, FactorKind.SMS, FactorKind.TOTP)

    @property
    def lists_unconfirmed(self) -> bool:
        """Passkeys are listed whatever their ``confirmed`` flag says."""
        return self is FactorKind.PASSKEY


class PreferredAuthenticationMethod(str, Enum):
    """Delivery channel for phone OTP codes."""

    SMS = "sms"
    VOICE = "voice"


# ═══════════════════════════════════════════════════════════════
# WIRE MODELS
# ═══════════════════════════════════════════════════════════════


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class EnrollmentChallenge(_WireModel):
    """Server-issued state returned by a ``start`` call.

    Must be handed back unmodified to the matching ``confirm`` call and is
    single-use.
    """

    kind: ClassVar[FactorKind]

    authentication_id: str = Field(alias="id", min_length=1)
    authentication_session: str = Field(alias="auth_session", min_length=1)


class EmailEnrollmentChallenge(EnrollmentChallenge):
    kind: ClassVar[FactorKind] = FactorKind.EMAIL


class PhoneEnrollmentChallenge(EnrollmentChallenge):
    kind: ClassVar[FactorKind] = FactorKind.SMS


class TotpEnrollmentChallenge(EnrollmentChallenge):
    """TOTP challenge carrying the shared secret as QR URI and manual code."""

    kind: ClassVar[FactorKind] = FactorKind.TOTP

    barcode_uri: str
    manual_input_code: str | None = None


class PushEnrollmentChallenge(EnrollmentChallenge):
    kind: ClassVar[FactorKind] = FactorKind.PUSH

    barcode_uri: str


class PasskeyEnrollmentChallenge(EnrollmentChallenge):
    """WebAuthn creation options for a new passkey.

    Accepts the flat form as well as the nested ``authn_params_public_key``
    payload returned by the API.
    """

    kind: ClassVar[FactorKind] = FactorKind.PASSKEY

    relying_party_id: str
    user_id: str
    user_name: str
    user_display_name: str | None = None
    challenge: str = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _flatten_public_key_params(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "authn_params_public_key" not in data:
            return data
        params = data.get("authn_params_public_key") or {}
        rp = params.get("rp") or {}
        user = params.get("user") or {}
        flattened = {
            key: value
            for key, value in data.items()
            if key != "authn_params_public_key"
        }
        flattened.update(
            relying_party_id=rp.get("id"),
            user_id=user.get("id"),
            user_name=user.get("name"),
            user_display_name=user.get("displayName") or user.get("display_name"),
            challenge=params.get("challenge"),
        )
        return flattened

    @property
    def challenge_bytes(self) -> bytes:
        return b64url_decode(self.challenge)

    @property
    def user_id_bytes(self) -> bytes:
        return b64url_decode(self.user_id)


class RecoveryCodeEnrollmentChallenge(EnrollmentChallenge):
    """Recovery-code challenge; the code is a SecretStr and never printed."""

    kind: ClassVar[FactorKind] = FactorKind.RECOVERY_CODE

    recovery_code: SecretStr


CHALLENGE_TYPES: dict[FactorKind, type[EnrollmentChallenge]] = {
    FactorKind.EMAIL: EmailEnrollmentChallenge,
    FactorKind.SMS: PhoneEnrollmentChallenge,
    FactorKind.TOTP: TotpEnrollmentChallenge,
    FactorKind.PUSH: PushEnrollmentChallenge,
    FactorKind.PASSKEY: PasskeyEnrollmentChallenge,
    FactorKind.RECOVERY_CODE: RecoveryCodeEnrollmentChallenge,
}


class AuthenticationMethod(_WireModel):
    """An enrolled (confirmed or pending) authentication method.

    Two records with the same ``id`` are the same method whatever their
    other fields say.
    """

    id: str = Field(min_length=1)
    type: str
    confirmed: bool = False
    created_at: datetime | None = None
    last_auth_at: datetime | None = None
    name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    preferred_authentication_method: PreferredAuthenticationMethod | None = None
    usage: tuple[str, ...] = ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuthenticationMethod):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def kind(self) -> FactorKind | None:
        """Factor kind, or None for types this SDK does not enroll."""
        try:
            return FactorKind(self.type)
        except ValueError:
            return None


class PasskeyAuthenticationMethod(AuthenticationMethod):
    type: str = FactorKind.PASSKEY.value
    key_id: str | None = None
    credential_device_type: str | None = None
    credential_backed_up: bool | None = None
    identity_user_id: str | None = None
    user_agent: str | None = None
    transports: tuple[str, ...] = ()


def parse_authentication_method(data: Any) -> AuthenticationMethod:
    """Decode one method, using the passkey model for passkey records."""
    if isinstance(data, dict) and data.get("type") == FactorKind.PASSKEY.value:
        return PasskeyAuthenticationMethod.model_validate(data)
    return AuthenticationMethod.model_validate(data)


class Factor(_WireModel):
    """A factor type enabled on the tenant."""

    type: str
    usage: tuple[str, ...] = ()

    @property
    def kind(self) -> FactorKind | None:
        try:
            return FactorKind(self.type)
        except ValueError:
            return None


# ═══════════════════════════════════════════════════════════════
# PASSKEYS
# ═══════════════════════════════════════════════════════════════


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded)


@dataclass(frozen=True)
class NewPasskey:
    """A passkey created by the platform credential provider.

    All binary values are base64url strings as produced by WebAuthn clients.

    Attributes:
        credential_id: Credential id (``rawId``).
        client_data_json: Client data JSON.
        attestation_object: Attestation object.
        authenticator_attachment: ``platform`` or ``cross-platform``.
        transports: Authenticator transports.
        challenge: Challenge the passkey was created for. When omitted it
            is read from the client data.
    """

    credential_id: str
    client_data_json: str
    attestation_object: str
    authenticator_attachment: str = "platform"
    transports: tuple[str, ...] = ()
    challenge: str | None = None

    def bound_challenge(self) -> str:
        """Return the challenge this passkey answers.

        Raises:
            InvalidEnrollmentInputError: If the client data cannot be read.
        """
        if self.challenge is not None:
            return self.challenge
        try:
            client_data = json.loads(b64url_decode(self.client_data_json))
        except (binascii.Error, ValueError) as e:
            raise InvalidEnrollmentInputError(
                "Passkey client data is not valid base64url JSON",
                field="client_data_json",
            ) from e
        challenge = client_data.get("challenge") if isinstance(client_data, dict) else None
        if not isinstance(challenge, str):
            raise InvalidEnrollmentInputError(
                "Passkey client data has no challenge", field="client_data_json"
            )
        return challenge

    def to_authn_response(self) -> dict[str, Any]:
        """WebAuthn registration response body."""
        response: dict[str, Any] = {
            "clientDataJSON": self.client_data_json,
            "attestationObject": self.attestation_object,
        }
        if self.transports:
            response["transports"] = list(self.transports)
        return {
            "id": self.credential_id,
            "rawId": self.credential_id,
            "type": "public-key",
            "authenticatorAttachment": self.authenticator_attachment,
            "response": response,
        }


__all__: list[str] = [
    "OPENID",
    "READ_AUTHENTICATION_METHODS",
    "DELETE_AUTHENTICATION_METHODS",
    "CREATE_AUTHENTICATION_METHODS",
    "READ_FACTORS",
    "ScopedAudience",
    "Credentials",
    "ApiCredentials",
    "FactorKind",
    "PreferredAuthenticationMethod",
    "EnrollmentChallenge",
    "EmailEnrollmentChallenge",
    "PhoneEnrollmentChallenge",
    "TotpEnrollmentChallenge",
    "PushEnrollmentChallenge",
    "PasskeyEnrollmentChallenge",
    "RecoveryCodeEnrollmentChallenge",
    "CHALLENGE_TYPES",
    "AuthenticationMethod",
    "PasskeyAuthenticationMethod",
    "parse_authentication_method",
    "Factor",
    "NewPasskey",
    "b64url_encode",
    "b64url_decode",
]
