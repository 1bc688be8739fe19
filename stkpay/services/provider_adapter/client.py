"""Outbound calls to the Daraja gateway.

Translates transport, status and payload failures into `AuthError` (token
exchange) and `GatewayError` (push submission). Nothing is retried here; the
caller decides.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from stkpay.common.errors import AuthError, GatewayError
from stkpay.common.logging import logger
from stkpay.common.metrics import gateway_call_seconds
from stkpay.services.provider_adapter.credentials import encode_basic_auth

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


@dataclass(frozen=True)
class PushSubmission:
    """Gateway acknowledgment of an accepted STK push request."""

    checkout_request_id: str
    customer_message: str | None = None
    merchant_request_id: str | None = None


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class DarajaClient:
    """Thin async wrapper around the two Daraja endpoints used by STK push."""

    def __init__(
        self,
        base_url: str,
        token_timeout: float = 10.0,
        push_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_timeout = token_timeout
        self.push_timeout = push_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self._transport)

    async def fetch_access_token(self, key: str, secret: str) -> str:
        """Exchange consumer key/secret for a bearer token."""

        headers = {
            "Authorization": f"Basic {encode_basic_auth(key, secret)}",
            "Content-Type": "application/json",
        }
        with gateway_call_seconds.labels(call="access_token").time():
            try:
                async with self._client(self.token_timeout) as client:
                    resp = await client.get(
                        TOKEN_PATH,
                        params={"grant_type": "client_credentials"},
                        headers=headers,
                    )
            except httpx.HTTPError as exc:
                logger.error("access token request failed: %r", exc)
                raise AuthError("Failed to obtain access token", str(exc) or type(exc).__name__) from exc

        body = _response_body(resp)
        if not resp.is_success:
            logger.error("access token rejected status=%s body=%s", resp.status_code, body)
            raise AuthError(f"Access token request returned HTTP {resp.status_code}", body)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            logger.error("access token missing from response body=%s", body)
            raise AuthError("Access token missing from gateway response", body)
        return token

    async def submit_push_request(self, payload: dict[str, Any], access_token: str) -> PushSubmission:
        """Submit one STK push request and return the gateway's correlation ids."""

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        with gateway_call_seconds.labels(call="stk_push").time():
            try:
                async with self._client(self.push_timeout) as client:
                    resp = await client.post(STK_PUSH_PATH, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                logger.error("stk push request failed: %r", exc)
                raise GatewayError("Failed to reach STK push API", str(exc) or type(exc).__name__) from exc

        body = _response_body(resp)
        if not resp.is_success:
            logger.error("stk push rejected status=%s body=%s", resp.status_code, body)
            raise GatewayError(f"STK push returned HTTP {resp.status_code}", body)
        if not isinstance(body, dict):
            logger.error("stk push returned non-JSON body=%s", body)
            raise GatewayError("STK push returned an unreadable response", body)

        response_code = body.get("ResponseCode")
        if response_code is not None and str(response_code) != "0":
            logger.error("stk push not accepted response_code=%s body=%s", response_code, body)
            raise GatewayError(body.get("ResponseDescription") or "STK push was not accepted", body)

        checkout_request_id = body.get("CheckoutRequestID")
        if not checkout_request_id:
            logger.error("stk push response missing CheckoutRequestID body=%s", body)
            raise GatewayError("CheckoutRequestID missing from gateway response", body)

        return PushSubmission(
            checkout_request_id=checkout_request_id,
            customer_message=body.get("CustomerMessage"),
            merchant_request_id=body.get("MerchantRequestID"),
        )
