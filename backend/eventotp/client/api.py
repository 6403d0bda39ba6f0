"""Async HTTP client for the OTP endpoints, used by the capture screen."""

import logging
from typing import Optional

import httpx

from eventotp.core.errors import TransportError, ValidationError
from eventotp.schemas.otp import RequestOTPResponse, SendOTPResponse, VerifyOTPResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class OTPApiClient:
    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def __aenter__(self) -> "OTPApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            resp = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("OTP request %s failed: %s", path, e)
            raise TransportError("Could not reach the verification service.") from e
        if resp.status_code in (400, 422):
            raise ValidationError(_detail(resp))
        return resp

    async def request_code(self, email: str) -> RequestOTPResponse:
        """Ask the server to issue and email a fresh code. TransportError if it could not be sent."""
        resp = await self._post("/request-otp", {"email": email})
        if resp.status_code >= 500:
            raise TransportError(_error(resp) or "Could not send code, try again.")
        resp.raise_for_status()
        return RequestOTPResponse.model_validate(resp.json())

    async def send_code(self, email: str, otp: str) -> SendOTPResponse:
        resp = await self._post("/send-otp", {"email": email, "otp": otp})
        if resp.status_code >= 500:
            raise TransportError(_error(resp) or "Failed to send email. Please try again.")
        resp.raise_for_status()
        return SendOTPResponse.model_validate(resp.json())

    async def verify(self, email: str, code: str) -> VerifyOTPResponse:
        resp = await self._post("/verify-otp", {"email": email, "code": code})
        if resp.status_code >= 500:
            raise TransportError("Verification service error.")
        resp.raise_for_status()
        return VerifyOTPResponse.model_validate(resp.json())


def _json(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error(resp: httpx.Response) -> Optional[str]:
    body = _json(resp)
    return body.get("error") or body.get("detail")


def _detail(resp: httpx.Response) -> str:
    detail = _json(resp).get("detail")
    if isinstance(detail, str):
        return detail
    return "Invalid email or code."
