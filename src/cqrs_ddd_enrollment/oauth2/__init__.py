"""OAuth2 flows used for step-up authentication."""

from __future__ import annotations

from .login import PkceInteractiveLogin
from .pkce import PKCEData, create_pkce_data, generate_pkce_challenge

__all__: list[str] = [
    "PkceInteractiveLogin",
    "PKCEData",
    "create_pkce_data",
    "generate_pkce_challenge",
]
