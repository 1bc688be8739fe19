"""Transaction record owned by the in-memory transaction store.

One record per STK push accepted by the gateway, keyed by the gateway's
`CheckoutRequestID`. Serialized with camelCase field names.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stkpay.common.state_machine import PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(BaseModel):
    """Current state of one push payment."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    checkout_request_id: str
    merchant_request_id: str | None = None
    phone: str
    amount: int
    account_ref: str
    customer_message: str | None = None
    status: str = PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Terminal fields, set once by callback reconciliation.
    result_code: int | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    actual_amount: Any = None
    receipt_number: str | None = None
    transaction_date: Any = None
    payer_phone: Any = None

    def to_public(self) -> dict[str, Any]:
        """JSON-ready camelCase view, omitting fields that were never set."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
