"""Payment lifecycle: initiate, reconcile, status read-back."""

import asyncio
from datetime import timedelta

import pytest

from conftest import ACCEPTED_PUSH, SUCCESS_ITEMS, FakeGateway, callback_body
from stkpay.common.errors import (
    AuthError,
    GatewayError,
    MalformedCallbackError,
    TransactionNotFoundError,
    ValidationError,
)
from stkpay.common.state_machine import COMPLETED, FAILED, PENDING
from stkpay.services.orchestrator.models import utcnow
from stkpay.services.orchestrator.schemas import StkPushRequest
from stkpay.services.orchestrator.service import PaymentService, normalize_phone, truncate_account_ref
from stkpay.services.orchestrator.store import TransactionStore

CHECKOUT_ID = ACCEPTED_PUSH["CheckoutRequestID"]


def push_request(**overrides) -> StkPushRequest:
    fields = {"phone": "0712345678", "amount": 100, "accountRef": "INV-2024-001"}
    fields.update(overrides)
    return StkPushRequest.model_validate({k: v for k, v in fields.items() if v is not None})


@pytest.mark.parametrize(
    "raw",
    ["0712345678", "+254712345678", "254712345678", "712345678", " 0712345678 "],
)
def test_normalize_phone(raw):
    assert normalize_phone(raw) == "254712345678"


def test_truncate_account_ref():
    assert truncate_account_ref("ABCDEFGHIJKLMNOPQRST") == "ABCDEFGHIJKL"
    assert truncate_account_ref("SHORT") == "SHORT"


def test_initiate_creates_one_pending_transaction(service, gateway):
    async def scenario():
        result = await service.initiate(push_request(accountRef="ABCDEFGHIJKLMNOPQRST"))
        return result, await service.get_status(result.checkout_request_id)

    result, txn = asyncio.run(scenario())

    assert result.checkout_request_id == CHECKOUT_ID
    assert result.customer_message == ACCEPTED_PUSH["CustomerMessage"]
    assert len(service.store) == 1
    assert txn.status == PENDING
    assert txn.created_at is not None
    assert txn.completed_at is None
    assert txn.error_message is None
    assert txn.receipt_number is None
    assert txn.phone == "254712345678"
    assert txn.account_ref == "ABCDEFGHIJKL"

    [payload] = gateway.push_payloads()
    assert payload["AccountReference"] == "ABCDEFGHIJKL"
    assert payload["PartyA"] == payload["PhoneNumber"] == "254712345678"
    assert payload["PartyB"] == payload["BusinessShortCode"] == "174379"
    assert payload["Amount"] == 100
    assert payload["TransactionType"] == "CustomerPayBillOnline"
    assert payload["CallBackURL"] == "https://example.test/api/mpesa/callback"
    assert len(payload["Timestamp"]) == 14


def test_initiate_truncates_fractional_amount(service, gateway):
    asyncio.run(service.initiate(push_request(amount="10.7")))

    assert gateway.push_payloads()[0]["Amount"] == 10


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": None},
        {"phone": None},
        {"accountRef": None},
        {"amount": 0},
        {"amount": -5},
        {"amount": "abc"},
        {"amount": "0.4"},
        {"phone": "07123-45678"},
        {"phone": "   "},
        {"accountRef": "  "},
        {"amount": [5]},
        {"phone": ["0712345678"]},
        {"phone": True},
        {"accountRef": 123},
    ],
)
def test_initiate_rejects_invalid_input(service, gateway, overrides):
    with pytest.raises(ValidationError):
        asyncio.run(service.initiate(push_request(**overrides)))

    assert len(service.store) == 0
    assert gateway.requests == []


def test_initiate_auth_failure_creates_nothing(config):
    gateway = FakeGateway(token_status=401, token_body={"errorMessage": "Invalid credentials"})
    service = PaymentService(TransactionStore(), gateway.client(), config)

    with pytest.raises(AuthError):
        asyncio.run(service.initiate(push_request()))

    assert len(service.store) == 0
    assert gateway.push_payloads() == []


def test_initiate_gateway_failure_creates_nothing(config):
    gateway = FakeGateway(push_status=500, push_body={"errorMessage": "Internal Server Error"})
    service = PaymentService(TransactionStore(), gateway.client(), config)

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(service.initiate(push_request()))

    assert exc_info.value.details == {"errorMessage": "Internal Server Error"}
    assert len(service.store) == 0


def test_initiate_without_credentials_skips_gateway(config, gateway):
    config.mpesa_consumer_secret = None
    service = PaymentService(TransactionStore(), gateway.client(), config)

    with pytest.raises(AuthError):
        asyncio.run(service.initiate(push_request()))

    assert gateway.requests == []


def test_reconcile_success_copies_metadata(service):
    async def scenario():
        await service.initiate(push_request())
        ack = await service.reconcile(callback_body(CHECKOUT_ID, 0, items=SUCCESS_ITEMS))
        return ack, await service.get_status(CHECKOUT_ID)

    ack, txn = asyncio.run(scenario())

    assert ack.ResultCode == 0
    assert ack.ResultDesc == "Success"
    assert txn.status == COMPLETED
    assert txn.completed_at is not None
    assert txn.actual_amount == 1.0
    assert txn.receipt_number == "NLJ7RT61SV"
    assert txn.transaction_date == 20191219102115
    assert txn.payer_phone == 254708374149
    assert txn.error_message is None


def test_reconcile_failure_records_description(service):
    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(callback_body(CHECKOUT_ID, 1032, "Request cancelled by user"))
        return await service.get_status(CHECKOUT_ID)

    txn = asyncio.run(scenario())

    assert txn.status == FAILED
    assert txn.error_message == "Request cancelled by user"
    assert txn.result_code == 1032
    assert txn.completed_at is None
    assert txn.receipt_number is None


def test_reconcile_tolerates_loose_callback_fields(service):
    body = callback_body(CHECKOUT_ID, 0, items=SUCCESS_ITEMS + [{"Value": "x"}, "junk", {"Name": 7, "Value": 1}])
    body["Body"]["stkCallback"]["MerchantRequestID"] = 29115

    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(body)
        return await service.get_status(CHECKOUT_ID)

    txn = asyncio.run(scenario())

    assert txn.status == COMPLETED
    assert txn.receipt_number == "NLJ7RT61SV"
    assert txn.actual_amount == 1.0


def test_reconcile_success_with_non_object_metadata(service):
    body = callback_body(CHECKOUT_ID, 0)
    body["Body"]["stkCallback"]["CallbackMetadata"] = "unavailable"

    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(body)
        return await service.get_status(CHECKOUT_ID)

    txn = asyncio.run(scenario())

    assert txn.status == COMPLETED
    assert txn.receipt_number is None


def test_reconcile_failure_with_non_string_description(service):
    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(callback_body(CHECKOUT_ID, 2001, 404))
        return await service.get_status(CHECKOUT_ID)

    txn = asyncio.run(scenario())

    assert txn.status == FAILED
    assert txn.error_message == "404"


def test_reconcile_is_idempotent(service):
    body = callback_body(CHECKOUT_ID, 0, items=SUCCESS_ITEMS)

    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(body)
        first = await service.get_status(CHECKOUT_ID)
        second_ack = await service.reconcile(body)
        await service.reconcile(callback_body(CHECKOUT_ID, 1, "late failure"))
        return first, second_ack, await service.get_status(CHECKOUT_ID)

    first, second_ack, final = asyncio.run(scenario())

    assert second_ack.ResultCode == 0
    assert final == first
    assert final.status == COMPLETED


def test_reconcile_unknown_key_acknowledges(service):
    ack = asyncio.run(service.reconcile(callback_body("ws_CO_unknown", 0, items=SUCCESS_ITEMS)))

    assert ack.ResultCode == 0
    assert len(service.store) == 0


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"Body": {}},
        {"Body": {"stkCallback": {"ResultCode": 0}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": CHECKOUT_ID, "ResultCode": "not-a-code"}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": CHECKOUT_ID, "ResultCode": "0"}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": CHECKOUT_ID, "ResultCode": False}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": CHECKOUT_ID, "ResultCode": 0.0}}},
    ],
)
def test_reconcile_unexpected_shape_is_a_noop(service, body):
    async def scenario():
        await service.initiate(push_request())
        ack = await service.reconcile(body)
        return ack, await service.get_status(CHECKOUT_ID)

    ack, txn = asyncio.run(scenario())

    assert ack.ResultCode == 0
    assert txn.status == PENDING


def test_reconcile_rejects_non_object_body(service):
    with pytest.raises(MalformedCallbackError):
        asyncio.run(service.reconcile(["not", "an", "object"]))


def test_get_status_unknown(service):
    with pytest.raises(TransactionNotFoundError):
        asyncio.run(service.get_status("ws_CO_missing"))


def test_purge_settled_respects_retention(config, gateway):
    config.settled_retention_seconds = 60
    service = PaymentService(TransactionStore(), gateway.client(), config)

    def age(txn):
        txn.updated_at = utcnow() - timedelta(minutes=5)

    async def scenario():
        await service.initiate(push_request())
        kept_pending = await service.purge_settled()
        await service.reconcile(callback_body(CHECKOUT_ID, 0, items=SUCCESS_ITEMS))
        await service.store.update(CHECKOUT_ID, age)
        return kept_pending, await service.purge_settled()

    kept_pending, purged = asyncio.run(scenario())

    assert kept_pending == 0
    assert purged == 1
    assert len(service.store) == 0


def test_purge_disabled_without_retention(service):
    async def scenario():
        await service.initiate(push_request())
        await service.reconcile(callback_body(CHECKOUT_ID, 0))
        return await service.purge_settled()

    assert asyncio.run(scenario()) == 0
    assert len(service.store) == 1
