"""Interactive authorization-code + PKCE login used for step-up.

The login opens ``/authorize`` for the audience and scope that failed with
``mfa_required``; the identity provider prompts for the second factor and
redirects back with a code, which is exchanged for credentials bound to
that audience and scope.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from ..exceptions import ConfigurationError, InteractiveLoginError
from ..models import Credentials
from .pkce import PKCEData, create_pkce_data

if TYPE_CHECKING:
    from ..config import EnrollmentConfig
    from ..ports import IBrowser

logger = logging.getLogger(__name__)


class PkceInteractiveLogin:
    """IInteractiveLogin implementation over a browser and the token endpoint.

    Example:
        ```python
        login = PkceInteractiveLogin(config, browser)
        credentials = await login.login(
            audience=config.audience,
            scope="openid create:me:authentication_methods",
        )
        ```
    """

    def __init__(
        self,
        config: EnrollmentConfig,
        browser: IBrowser,
        *,
        http_client: httpx.AsyncClient | None = None,
        redirect_uri: str | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> None:
        redirect = redirect_uri or config.redirect_uri
        if not redirect:
            raise ConfigurationError("A redirect_uri is required for interactive login")
        self._config = config
        self._browser = browser
        self._redirect_uri = redirect
        self._extra_params = dict(extra_params or {})
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def authorization_url(
        self,
        *,
        audience: str,
        scope: str,
        state: str,
        pkce: PKCEData,
    ) -> str:
        """Build the /authorize URL for one login attempt."""
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._redirect_uri,
            "audience": audience,
            "scope": scope,
            "state": state,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
        }
        params.update(self._extra_params)
        return f"{self._config.authorization_endpoint}?{urlencode(params, safe='')}"

    async def login(self, *, audience: str, scope: str) -> Credentials:
        """Run the browser flow and exchange the code.

        Raises:
            LoginCancelledError: Propagated from the browser.
            InteractiveLoginError: Error callback, state mismatch, missing
                code or failed exchange.
        """
        pkce = create_pkce_data()
        state = secrets.token_urlsafe(32)
        url = self.authorization_url(audience=audience, scope=scope, state=state, pkce=pkce)

        callback_url = await self._browser.authorize(url, self._redirect_uri)
        params = _callback_params(callback_url)

        if not secrets.compare_digest(params.get("state", "").encode(), state.encode()):
            raise InteractiveLoginError("Invalid OAuth state", code="invalid_state")
        error = params.get("error")
        if error:
            raise InteractiveLoginError(
                params.get("error_description") or error, code=error
            )
        code = params.get("code")
        if not code:
            raise InteractiveLoginError(
                "Callback carries no authorization code", code="invalid_request"
            )

        credentials = await self._exchange_code(code, pkce)
        logger.info("Interactive login completed for %s", audience)
        return credentials

    async def _exchange_code(self, code: str, pkce: PKCEData) -> Credentials:
        data = {
            "grant_type": "authorization_code",
            "client_id": self._config.client_id,
            "code": code,
            "code_verifier": pkce.code_verifier,
            "redirect_uri": self._redirect_uri,
        }
        try:
            response = await self._http.post(
                self._config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise InteractiveLoginError("Token endpoint unreachable") from e

        body = _json_object(response)
        if response.is_error:
            error = body.get("error")
            raise InteractiveLoginError(
                str(body.get("error_description") or f"HTTP {response.status_code}"),
                code=error if isinstance(error, str) else None,
            )
        return Credentials.from_token_response(body)


def _callback_params(callback_url: str) -> dict[str, str]:
    query = parse_qs(urlsplit(callback_url).query)
    return {key: values[0] for key, values in query.items() if values}


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


__all__: list[str] = ["PkceInteractiveLogin"]
