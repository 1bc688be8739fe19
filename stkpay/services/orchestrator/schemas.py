"""Request, callback and response schemas for the payment endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class StkPushRequest(BaseModel):
    """Payload accepted by `POST /api/mpesa/stk-push`.

    Fields are untyped here; presence, type and range checks belong to
    `PaymentService.initiate` so that they surface as `ValidationError`.
    """

    model_config = ConfigDict(populate_by_name=True)

    phone: Any = None
    amount: Any = None
    account_ref: Any = Field(default=None, alias="accountRef")


class InitiateResult(BaseModel):
    checkout_request_id: str
    customer_message: str | None = None


class CallbackItem(BaseModel):
    """One `CallbackMetadata.Item` entry (`Name`/`Value` pair)."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = Field(default=None, alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[CallbackItem] = Field(default_factory=list, alias="Item")

    @field_validator("items", mode="before")
    @classmethod
    def _named_items_only(cls, value: Any) -> list:
        # Unrecognised entries are skipped rather than failing the callback.
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and isinstance(item.get("Name"), str)]


class StkCallback(BaseModel):
    """Result of one STK push as reported by the gateway.

    Only `CheckoutRequestID` and an integer `ResultCode` are required; the
    remaining fields never prevent a callback from being applied.
    """

    model_config = ConfigDict(extra="ignore")

    merchant_request_id: Any = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: StrictInt = Field(alias="ResultCode")
    result_desc: Any = Field(default=None, alias="ResultDesc")
    callback_metadata: CallbackMetadata | None = Field(default=None, alias="CallbackMetadata")

    @field_validator("callback_metadata", mode="before")
    @classmethod
    def _metadata_object_only(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @property
    def description(self) -> str | None:
        return None if self.result_desc is None else str(self.result_desc)

    def metadata(self) -> dict[str, Any]:
        """Flatten metadata items into a `Name -> Value` mapping."""

        if self.callback_metadata is None:
            return {}
        return {item.name: item.value for item in self.callback_metadata.items if item.name}


class CallbackBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stk_callback: StkCallback | None = Field(default=None, alias="stkCallback")


class CallbackEnvelope(BaseModel):
    """Top-level `{"Body": {"stkCallback": {...}}}` notification."""

    model_config = ConfigDict(extra="ignore")

    body: CallbackBody | None = Field(default=None, alias="Body")


class CallbackAck(BaseModel):
    """Acknowledgment returned to the gateway for every callback."""

    ResultCode: int = 0
    ResultDesc: str = "Success"


CALLBACK_ACCEPTED = CallbackAck()
CALLBACK_FAILED = CallbackAck(ResultCode=1, ResultDesc="Failed")
