"""Shared fixtures: test settings and a scripted Daraja gateway."""

import json

import httpx
import pytest

from stkpay.common.config import Settings
from stkpay.services.orchestrator.service import PaymentService
from stkpay.services.orchestrator.store import TransactionStore
from stkpay.services.provider_adapter.client import STK_PUSH_PATH, TOKEN_PATH, DarajaClient

ACCEPTED_PUSH = {
    "MerchantRequestID": "29115-34620561-1",
    "CheckoutRequestID": "ws_CO_191220191020363925",
    "ResponseCode": "0",
    "ResponseDescription": "Success. Request accepted for processing",
    "CustomerMessage": "Success. Request accepted for processing",
}


class FakeGateway:
    """Scripted stand-in for the two Daraja endpoints, served via MockTransport."""

    def __init__(
        self,
        token_status: int = 200,
        token_body=None,
        push_status: int = 200,
        push_body=None,
        token_exc: Exception | None = None,
        push_exc: Exception | None = None,
    ) -> None:
        self.token_status = token_status
        self.token_body = {"access_token": "tok-123", "expires_in": "3599"} if token_body is None else token_body
        self.push_status = push_status
        self.push_body = dict(ACCEPTED_PUSH) if push_body is None else push_body
        self.token_exc = token_exc
        self.push_exc = push_exc
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _respond(status: int, body) -> httpx.Response:
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            if self.token_exc is not None:
                raise self.token_exc
            return self._respond(self.token_status, self.token_body)
        if request.url.path == STK_PUSH_PATH:
            if self.push_exc is not None:
                raise self.push_exc
            return self._respond(self.push_status, self.push_body)
        return httpx.Response(404, json={"errorMessage": "unknown path"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> DarajaClient:
        return DarajaClient("https://gateway.test", transport=self.transport)

    def push_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == STK_PUSH_PATH]


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_shortcode="174379",
        mpesa_passkey="bfb279f9aa9bdbcf158e97dd71a467cd",
        mpesa_callback_url="https://example.test/api/mpesa/callback",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def service(config, gateway) -> PaymentService:
    return PaymentService(TransactionStore(), gateway.client(), config)


def callback_body(checkout_request_id: str, result_code: int = 0, result_desc: str = "The service request is processed successfully.", items=None) -> dict:
    """Build a gateway callback envelope."""

    stk = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if items is not None:
        stk["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": stk}}


SUCCESS_ITEMS = [
    {"Name": "Amount", "Value": 1.0},
    {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
    {"Name": "Balance"},
    {"Name": "TransactionDate", "Value": 20191219102115},
    {"Name": "PhoneNumber", "Value": 254708374149},
]
