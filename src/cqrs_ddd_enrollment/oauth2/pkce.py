"""PKCE (RFC 7636) helpers for the step-up authorization code flow."""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from typing import Literal

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEData:
    """Verifier and S256 challenge for one authorization request.

    Attributes:
        code_verifier: Secret sent with the token exchange.
        code_challenge: ``BASE64URL(SHA256(code_verifier))`` sent to /authorize.
        code_challenge_method: Always ``S256``.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"


def generate_pkce_verifier(length: int = 64) -> str:
    """Return a random code verifier of ``length`` unreserved characters.

    Raises:
        ValueError: If ``length`` is outside 43..128.
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"code_verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH} characters"
        )
    # token_urlsafe(n) yields about 1.3 * n characters
    return secrets.token_urlsafe(length)[:length]


def generate_pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def create_pkce_data(verifier_length: int = 64) -> PKCEData:
    verifier = generate_pkce_verifier(verifier_length)
    return PKCEData(
        code_verifier=verifier, code_challenge=generate_pkce_challenge(verifier)
    )


__all__: list[str] = [
    "PKCEData",
    "generate_pkce_verifier",
    "generate_pkce_challenge",
    "create_pkce_data",
]
