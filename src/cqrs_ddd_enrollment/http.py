"""httpx adapter for the account-management (My Account) API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote, unquote, urlsplit

import httpx
import pydantic

from .exceptions import DecodeError, MyAccountApiError, TransportError
from .models import (
    AuthenticationMethod,
    EmailEnrollmentChallenge,
    EnrollmentChallenge,
    Factor,
    FactorKind,
    NewPasskey,
    PasskeyAuthenticationMethod,
    PasskeyEnrollmentChallenge,
    PhoneEnrollmentChallenge,
    PreferredAuthenticationMethod,
    PushEnrollmentChallenge,
    RecoveryCodeEnrollmentChallenge,
    TotpEnrollmentChallenge,
    parse_authentication_method,
)

if TYPE_CHECKING:
    from types import TracebackType

    from .config import EnrollmentConfig

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=EnrollmentChallenge)
M = TypeVar("M")

METHODS_PATH = "/authentication-methods"
FACTORS_PATH = "/factors"


class MyAccountHttpClient:
    """IMyAccountClient implementation over httpx.

    Error statuses raise MyAccountApiError, transport failures raise
    TransportError and bodies that do not match the expected model raise
    DecodeError. Nothing is retried.

    Example:
        ```python
        async with MyAccountHttpClient(config) as client:
            methods = await client.get_authentication_methods(token)
        ```
    """

    def __init__(
        self,
        config: EnrollmentConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = config.api_base_url
        self._user_agent = config.user_agent
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> MyAccountHttpClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ── listing and deletion ───────────────────────────────────

    async def get_authentication_methods(self, token: str) -> list[AuthenticationMethod]:
        body = self._decode(await self._request("GET", METHODS_PATH, token))
        items = _unwrap_list(body, "authentication_methods")
        return [self._validate(parse_authentication_method, item) for item in items]

    async def get_factors(self, token: str) -> list[Factor]:
        body = self._decode(await self._request("GET", FACTORS_PATH, token))
        items = _unwrap_list(body, "factors")
        return [self._validate(Factor.model_validate, item) for item in items]

    async def delete_authentication_method(self, token: str, method_id: str) -> None:
        await self._request("DELETE", _method_path(method_id), token)

    # ── enrollment start ───────────────────────────────────────

    async def enroll_email(self, token: str, email: str) -> EmailEnrollmentChallenge:
        return await self._start(
            EmailEnrollmentChallenge,
            token,
            {"type": FactorKind.EMAIL.value, "email": email},
        )

    async def enroll_phone(
        self,
        token: str,
        phone_number: str,
        preferred_authentication_method: PreferredAuthenticationMethod = (
            PreferredAuthenticationMethod.SMS
        ),
    ) -> PhoneEnrollmentChallenge:
        return await self._start(
            PhoneEnrollmentChallenge,
            token,
            {
                "type": FactorKind.SMS.value,
                "phone_number": phone_number,
                "preferred_authentication_method": preferred_authentication_method.value,
            },
        )

    async def enroll_totp(self, token: str) -> TotpEnrollmentChallenge:
        return await self._start(
            TotpEnrollmentChallenge, token, {"type": FactorKind.TOTP.value}
        )

    async def enroll_push_notification(self, token: str) -> PushEnrollmentChallenge:
        return await self._start(
            PushEnrollmentChallenge, token, {"type": FactorKind.PUSH.value}
        )

    async def enroll_recovery_code(self, token: str) -> RecoveryCodeEnrollmentChallenge:
        return await self._start(
            RecoveryCodeEnrollmentChallenge,
            token,
            {"type": FactorKind.RECOVERY_CODE.value},
        )

    async def passkey_enrollment_challenge(
        self,
        token: str,
        *,
        user_identity_id: str | None = None,
        connection: str | None = None,
    ) -> PasskeyEnrollmentChallenge:
        payload: dict[str, Any] = {"type": FactorKind.PASSKEY.value}
        if user_identity_id:
            payload["identity_user_id"] = user_identity_id
        if connection:
            payload["connection"] = connection
        return await self._start(PasskeyEnrollmentChallenge, token, payload)

    # ── enrollment confirmation ────────────────────────────────

    async def confirm_enrollment(
        self,
        token: str,
        authentication_id: str,
        authentication_session: str,
        otp_code: str | None = None,
    ) -> AuthenticationMethod:
        payload: dict[str, Any] = {"auth_session": authentication_session}
        if otp_code is not None:
            payload["otp_code"] = otp_code
        response = await self._request(
            "POST", f"{_method_path(authentication_id)}/verify", token, json=payload
        )
        return self._validate(parse_authentication_method, self._decode(response))

    async def confirm_passkey_enrollment(
        self,
        token: str,
        challenge: PasskeyEnrollmentChallenge,
        passkey: NewPasskey,
    ) -> PasskeyAuthenticationMethod:
        payload = {
            "auth_session": challenge.authentication_session,
            "authn_response": passkey.to_authn_response(),
        }
        response = await self._request(
            "POST",
            f"{_method_path(challenge.authentication_id)}/verify",
            token,
            json=payload,
        )
        return self._validate(
            PasskeyAuthenticationMethod.model_validate, self._decode(response)
        )

    # ── plumbing ───────────────────────────────────────────────

    async def _start(
        self, model: type[C], token: str, payload: dict[str, Any]
    ) -> C:
        response = await self._request("POST", METHODS_PATH, token, json=payload)
        body = self._decode(response)
        if isinstance(body, dict) and not body.get("id"):
            location_id = _id_from_location(response.headers.get("Location"))
            if location_id:
                body = {**body, "id": location_id}
        return self._validate(model.model_validate, body)

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }
        try:
            response = await self._http.request(method, url, json=json, headers=headers)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, type(e).__name__)
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            logger.info("%s %s returned HTTP %d", method, path, response.status_code)
            raise MyAccountApiError.from_response(
                response.status_code, _json_or_none(response)
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                f"Response of {response.request.method} {response.request.url.path} "
                "is not valid JSON"
            ) from e

    @staticmethod
    def _validate(parse: Callable[[Any], M], data: Any) -> M:
        try:
            return parse(data)
        except pydantic.ValidationError as e:
            raise DecodeError(f"Unexpected response shape: {e.error_count()} error(s)") from e


def _method_path(method_id: str) -> str:
    return f"{METHODS_PATH}/{quote(method_id, safe='')}"


def _id_from_location(location: str | None) -> str | None:
    if not location:
        return None
    segment = urlsplit(location).path.rstrip("/").rsplit("/", 1)[-1]
    return unquote(segment) or None


def _unwrap_list(body: Any, key: str) -> list[Any]:
    if isinstance(body, dict):
        body = body.get(key)
    if not isinstance(body, list):
        raise DecodeError(f"Expected a list of {key}")
    return body


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


__all__: list[str] = ["MyAccountHttpClient"]
