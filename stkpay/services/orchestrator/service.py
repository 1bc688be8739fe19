"""STK push lifecycle coordination.

Accepts payment requests, obtains gateway credentials, submits the push,
registers the `pending` transaction, and later applies the gateway callback to
the matching record. Every transition goes through the state machine and is
applied at most once per transaction.
"""

import asyncio
import math
from datetime import timedelta
from typing import Any

from pydantic import ValidationError as SchemaError

from stkpay.common.config import Settings
from stkpay.common.errors import (
    AuthError,
    DuplicateKeyError,
    GatewayError,
    MalformedCallbackError,
    TransactionNotFoundError,
    ValidationError,
)
from stkpay.common.logging import checkout_request_id_ctx, logger
from stkpay.common.metrics import (
    callbacks_received_total,
    stk_push_failures_total,
    stk_push_requests_total,
    transactions_purged_total,
    transactions_settled_total,
)
from stkpay.common.state_machine import COMPLETED, FAILED, is_terminal, validate_transition
from stkpay.services.orchestrator.models import Transaction, utcnow
from stkpay.services.orchestrator.schemas import (
    CALLBACK_ACCEPTED,
    CallbackAck,
    CallbackEnvelope,
    InitiateResult,
    StkCallback,
    StkPushRequest,
)
from stkpay.services.orchestrator.store import TransactionStore
from stkpay.services.provider_adapter.client import DarajaClient
from stkpay.services.provider_adapter.credentials import derive_password

SUCCESS_RESULT_CODE = 0

# Callback metadata item name -> Transaction field.
METADATA_FIELDS = {
    "Amount": "actual_amount",
    "MpesaReceiptNumber": "receipt_number",
    "TransactionDate": "transaction_date",
    "PhoneNumber": "payer_phone",
}


def normalize_phone(phone: str, country_code: str = "254") -> str:
    """Rewrite a subscriber number into the gateway's `254XXXXXXXXX` form.

    Only a leading `+` is removed, so `+254712345678` becomes `254712345678`.
    """

    value = phone.strip()
    if value.startswith("0"):
        return f"{country_code}{value[1:]}"
    if value.startswith(f"+{country_code}"):
        return value[1:]
    if value.startswith(country_code):
        return value
    return f"{country_code}{value}"


def truncate_account_ref(account_ref: str, max_length: int = 12) -> str:
    return account_ref[:max_length]


def _parse_amount(raw: Any) -> int:
    """Positive whole amount; fractional input is truncated."""

    if isinstance(raw, bool):
        raise ValidationError("Amount must be a positive number")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Amount must be a positive number") from exc
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Amount must be a positive number")
    amount = int(value)
    if amount <= 0:
        raise ValidationError("Amount must be at least 1")
    return amount


class PaymentService:
    """Owns the transaction lifecycle: initiate, reconcile, read back."""

    def __init__(
        self,
        store: TransactionStore,
        client: DarajaClient,
        config: Settings,
        service_name: str = "stkpay",
    ) -> None:
        self.store = store
        self.client = client
        self.config = config
        self.service_name = service_name

    def _validate(self, req: StkPushRequest) -> tuple[str, int, str]:
        missing = (
            req.phone is None
            or (isinstance(req.phone, str) and not req.phone.strip())
            or req.amount in (None, "")
            or req.account_ref is None
            or (isinstance(req.account_ref, str) and not req.account_ref.strip())
        )
        if missing:
            raise ValidationError("Phone, amount, and account reference are required")
        if isinstance(req.phone, bool) or not isinstance(req.phone, (str, int)):
            raise ValidationError("Phone number must be a string of digits")
        if not isinstance(req.account_ref, str):
            raise ValidationError("Account reference must be a string")
        amount = _parse_amount(req.amount)
        phone = normalize_phone(str(req.phone), self.config.country_code)
        if not phone.isdigit():
            raise ValidationError("Phone number must contain digits only", {"phone": phone})
        return phone, amount, truncate_account_ref(req.account_ref, self.config.account_ref_max_length)

    def _require_gateway_config(self) -> None:
        missing = self.config.missing_gateway_settings()
        if not missing:
            return
        credentials = [name for name in missing if name.startswith("MPESA_CONSUMER_")]
        if credentials:
            raise AuthError("Gateway credentials are not configured", {"missing": credentials})
        raise GatewayError("Gateway settings are not configured", {"missing": missing})

    async def initiate(self, req: StkPushRequest) -> InitiateResult:
        """Submit an STK push and register the resulting `pending` transaction.

        Raises `ValidationError` before any outbound call, and lets
        `AuthError`/`GatewayError` from the gateway propagate unchanged. No
        transaction exists unless the gateway accepted the push.
        """

        stk_push_requests_total.labels(service=self.service_name).inc()
        try:
            phone, amount, account_ref = self._validate(req)
            self._require_gateway_config()
            token = await self.client.fetch_access_token(
                self.config.mpesa_consumer_key, self.config.mpesa_consumer_secret
            )
            credentials = derive_password(self.config.mpesa_shortcode, self.config.mpesa_passkey)
            payload = {
                "BusinessShortCode": self.config.mpesa_shortcode,
                "Password": credentials.password,
                "Timestamp": credentials.timestamp,
                "TransactionType": self.config.transaction_type,
                "Amount": amount,
                "PartyA": phone,
                "PartyB": self.config.mpesa_shortcode,
                "PhoneNumber": phone,
                "CallBackURL": self.config.callback_url,
                "AccountReference": account_ref,
                "TransactionDesc": self.config.transaction_desc,
            }
            submission = await self.client.submit_push_request(payload, token)
        except ValidationError:
            stk_push_failures_total.labels(service=self.service_name, reason="validation").inc()
            raise
        except AuthError:
            stk_push_failures_total.labels(service=self.service_name, reason="auth").inc()
            raise
        except GatewayError:
            stk_push_failures_total.labels(service=self.service_name, reason="gateway").inc()
            raise

        checkout_request_id_ctx.set(submission.checkout_request_id)
        try:
            await self.store.create(
                submission.checkout_request_id,
                merchant_request_id=submission.merchant_request_id,
                phone=phone,
                amount=amount,
                account_ref=account_ref,
                customer_message=submission.customer_message,
            )
        except DuplicateKeyError:
            logger.critical(
                "gateway reissued checkout_request_id=%s, existing transaction kept",
                submission.checkout_request_id,
            )
            raise
        logger.info(
            "stk push accepted checkout_request_id=%s amount=%s",
            submission.checkout_request_id,
            amount,
        )
        return InitiateResult(
            checkout_request_id=submission.checkout_request_id,
            customer_message=submission.customer_message,
        )

    @staticmethod
    def decode_callback(body: Any) -> StkCallback | None:
        """Decode the callback envelope once.

        Returns None when the expected `Body.stkCallback` shape is absent or
        incomplete; raises `MalformedCallbackError` when the body is not a JSON
        object at all.
        """

        if not isinstance(body, dict):
            raise MalformedCallbackError("Callback body must be a JSON object", {"type": type(body).__name__})
        try:
            envelope = CallbackEnvelope.model_validate(body)
        except SchemaError as exc:
            logger.warning("callback ignored, unexpected shape: %s", exc.errors(include_url=False))
            return None
        if envelope.body is None or envelope.body.stk_callback is None:
            return None
        return envelope.body.stk_callback

    def _settle(self, callback: StkCallback, applied: list[str]):
        """Build the store mutator for one callback; records the new status in `applied`."""

        def mutate(txn: Transaction) -> None:
            if is_terminal(txn.status):
                return
            now = utcnow()
            if callback.result_code == SUCCESS_RESULT_CODE:
                validate_transition(txn.status, COMPLETED)
                txn.status = COMPLETED
                txn.completed_at = now
                metadata = callback.metadata()
                for name, field in METADATA_FIELDS.items():
                    if name in metadata:
                        setattr(txn, field, metadata[name])
            else:
                validate_transition(txn.status, FAILED)
                txn.status = FAILED
                txn.error_message = callback.description
            txn.result_code = callback.result_code
            txn.updated_at = now
            applied.append(txn.status)

        return mutate

    async def reconcile(self, body: Any) -> CallbackAck:
        """Apply a gateway callback to its transaction and acknowledge it.

        Unknown, late and duplicate callbacks are acknowledged without any
        mutation; a terminal transaction is never changed again.
        """

        callback = self.decode_callback(body)
        if callback is None:
            callbacks_received_total.labels(service=self.service_name, outcome="ignored").inc()
            return CALLBACK_ACCEPTED

        checkout_request_id_ctx.set(callback.checkout_request_id)
        applied: list[str] = []
        try:
            txn = await self.store.update(callback.checkout_request_id, self._settle(callback, applied))
        except TransactionNotFoundError:
            logger.warning(
                "callback for unknown transaction checkout_request_id=%s",
                callback.checkout_request_id,
            )
            callbacks_received_total.labels(service=self.service_name, outcome="unknown").inc()
            return CALLBACK_ACCEPTED

        if not applied:
            logger.info(
                "duplicate callback skipped checkout_request_id=%s status=%s",
                callback.checkout_request_id,
                txn.status,
            )
            callbacks_received_total.labels(service=self.service_name, outcome="duplicate").inc()
            return CALLBACK_ACCEPTED

        logger.info(
            "transaction settled checkout_request_id=%s status=%s result_code=%s",
            callback.checkout_request_id,
            txn.status,
            callback.result_code,
        )
        callbacks_received_total.labels(service=self.service_name, outcome="applied").inc()
        transactions_settled_total.labels(service=self.service_name, status=txn.status).inc()
        return CALLBACK_ACCEPTED

    async def get_status(self, checkout_request_id: str) -> Transaction:
        """Read-only view of one transaction; raises `TransactionNotFoundError`."""

        return await self.store.get(checkout_request_id)

    async def purge_settled(self) -> int:
        """Apply the retention policy once; no-op when retention is unset."""

        retention = self.config.settled_retention_seconds
        if retention is None:
            return 0
        purged = await self.store.purge_settled(utcnow() - timedelta(seconds=retention))
        if purged:
            transactions_purged_total.labels(service=self.service_name).inc(purged)
            logger.info("purged %s settled transactions", purged)
        return purged

    async def retention_worker(self) -> None:
        """Continuously apply the retention policy."""

        while True:
            try:
                await self.purge_settled()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("retention purge failed: %s", exc)
            await asyncio.sleep(self.config.purge_interval_seconds)
