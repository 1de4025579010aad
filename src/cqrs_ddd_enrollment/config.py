"""SDK configuration.

One EnrollmentConfig is built at startup and handed to every component
that needs the tenant domain, client id or account-management audience.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .exceptions import ConfigurationError

__version__ = "0.1.0"

DEFAULT_USER_AGENT = f"cqrs-ddd-enrollment/{__version__}"


def ensure_https(value: str) -> str:
    """Prefix ``value`` with ``https://`` unless it already has a scheme.

    Args:
        value: Domain or URL.

    Returns:
        An ``https://`` URL (``http://`` URLs are left untouched).
    """
    if value.startswith(("https://", "http://")):
        return value
    return f"https://{value}"


@dataclass(frozen=True)
class EnrollmentConfig:
    """Configuration for the enrollment SDK.

    Attributes:
        domain: Tenant domain, e.g. ``tenant.eu.auth0.com``.
        client_id: OAuth2 client id used for step-up and token refresh.
        audience: Account-management API identifier. Defaults to
            ``https://{domain}/me/``.
        redirect_uri: Callback URI of the interactive login flow.
        max_step_ups: Step-up ceiling per logical operation.
        timeout: HTTP timeout in seconds.
        user_agent: User-Agent header sent on every request.

    Example:
        ```python
        config = EnrollmentConfig(domain="tenant.auth0.com", client_id="abc")
        config.audience  # "https://tenant.auth0.com/me/"
        ```
    """

    domain: str
    client_id: str
    audience: str = ""
    redirect_uri: str | None = None
    max_step_ups: int = 1
    timeout: float = 10.0
    user_agent: str = field(default=DEFAULT_USER_AGENT)

    def __post_init__(self) -> None:
        if not self.domain or not self.domain.strip():
            raise ConfigurationError("domain must not be empty")
        if not self.client_id or not self.client_id.strip():
            raise ConfigurationError("client_id must not be empty")
        if self.max_step_ups < 0:
            raise ConfigurationError("max_step_ups must be >= 0")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

        domain = ensure_https(self.domain.strip()).rstrip("/")
        object.__setattr__(self, "domain", domain)
        audience = ensure_https(self.audience) if self.audience else f"{domain}/me/"
        object.__setattr__(self, "audience", audience)

    @property
    def host(self) -> str:
        """Domain without scheme."""
        return self.domain.split("://", 1)[1]

    @property
    def api_base_url(self) -> str:
        """Base URL of the account-management API."""
        return f"{self.domain}/me/v1"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.domain}/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.domain}/oauth/token"

    @classmethod
    def from_env(
        cls,
        prefix: str = "MYACCOUNT_",
        environ: dict[str, str] | None = None,
    ) -> EnrollmentConfig:
        """Build the configuration from environment variables.

        Reads ``{prefix}DOMAIN``, ``{prefix}CLIENT_ID`` and the optional
        ``AUDIENCE``, ``REDIRECT_URI``, ``MAX_STEP_UPS`` and ``TIMEOUT``.

        Args:
            prefix: Variable name prefix.
            environ: Mapping to read from (defaults to ``os.environ``).

        Raises:
            ConfigurationError: If a required variable is missing or a
                numeric value cannot be parsed.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(f"{prefix}{name}")
            return value or None

        domain = get("DOMAIN")
        client_id = get("CLIENT_ID")
        if domain is None or client_id is None:
            raise ConfigurationError(
                f"{prefix}DOMAIN and {prefix}CLIENT_ID must be set"
            )

        try:
            max_step_ups = int(get("MAX_STEP_UPS") or 1)
            timeout = float(get("TIMEOUT") or 10.0)
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        return cls(
            domain=domain,
            client_id=client_id,
            audience=get("AUDIENCE") or "",
            redirect_uri=get("REDIRECT_URI"),
            max_step_ups=max_step_ups,
            timeout=timeout,
        )


__all__: list[str] = [
    "DEFAULT_USER_AGENT",
    "EnrollmentConfig",
    "ensure_https",
]
