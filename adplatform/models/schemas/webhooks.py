"""
Payment-processor webhook events, decoded at the boundary.

Each supported event type maps to one model; the union is discriminated on
the ``type`` field. Types we do not handle decode to ``UnknownEvent`` so the
caller can acknowledge them without touching business state.
"""
from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as SchemaValidationError

from adplatform.utils.errors import ValidationError

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
INVOICE_FINALIZED = "invoice.finalized"


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EventMetadata(_StripeObject):
    """``metadata`` we attach at checkout: ``user_id`` and comma-joined ``campaign_ids``."""
    user_id: Optional[int] = None
    campaign_ids: List[int] = Field(default_factory=list)

    @field_validator("user_id", mode="before")
    @classmethod
    def _blank_user(cls, v):
        return None if v in ("", None) else v

    @field_validator("campaign_ids", mode="before")
    @classmethod
    def _split_ids(cls, v):
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class CheckoutSessionObject(_StripeObject):
    id: str
    payment_intent: Optional[str] = None
    payment_status: str = "paid"
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("metadata")
    @classmethod
    def _require_owner(cls, v: EventMetadata):
        if v.user_id is None or not v.campaign_ids:
            raise ValueError("checkout session metadata must carry user_id and campaign_ids")
        return v


class PaymentError(_StripeObject):
    code: Optional[str] = None
    message: Optional[str] = None


class PaymentIntentObject(_StripeObject):
    id: str
    amount: Optional[int] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    last_payment_error: Optional[PaymentError] = None


class InvoiceObject(_StripeObject):
    id: str
    number: Optional[str] = None
    payment_intent: Optional[str] = None
    invoice_pdf: Optional[str] = None
    hosted_invoice_url: Optional[str] = None


class _CheckoutData(_StripeObject):
    object: CheckoutSessionObject


class _PaymentIntentData(_StripeObject):
    object: PaymentIntentObject


class _InvoiceData(_StripeObject):
    object: InvoiceObject


class CheckoutSessionCompleted(_StripeObject):
    id: str
    type: Literal["checkout.session.completed"]
    data: _CheckoutData

    @property
    def session(self) -> CheckoutSessionObject:
        return self.data.object


class PaymentIntentSucceeded(_StripeObject):
    id: str
    type: Literal["payment_intent.succeeded"]
    data: _PaymentIntentData

    @property
    def intent(self) -> PaymentIntentObject:
        return self.data.object


class PaymentIntentFailed(_StripeObject):
    id: str
    type: Literal["payment_intent.payment_failed"]
    data: _PaymentIntentData

    @property
    def intent(self) -> PaymentIntentObject:
        return self.data.object


class InvoiceFinalized(_StripeObject):
    id: str
    type: Literal["invoice.finalized"]
    data: _InvoiceData

    @property
    def invoice(self) -> InvoiceObject:
        return self.data.object


class UnknownEvent(_StripeObject):
    id: str
    type: str


KnownEvent = Annotated[
    Union[CheckoutSessionCompleted, PaymentIntentSucceeded, PaymentIntentFailed, InvoiceFinalized],
    Field(discriminator="type"),
]
WebhookEvent = Union[CheckoutSessionCompleted, PaymentIntentSucceeded, PaymentIntentFailed, InvoiceFinalized, UnknownEvent]

KNOWN_EVENT_TYPES = frozenset({
    CHECKOUT_SESSION_COMPLETED,
    PAYMENT_INTENT_SUCCEEDED,
    PAYMENT_INTENT_FAILED,
    INVOICE_FINALIZED,
})

_KNOWN_EVENT_ADAPTER: TypeAdapter[KnownEvent] = TypeAdapter(KnownEvent)


def decode_event(payload: bytes | str) -> WebhookEvent:
    """Decode a raw (already verified) webhook body into a typed event.

    Raises ``ValidationError`` when the envelope or a known event's body is
    malformed.
    """
    try:
        envelope = UnknownEvent.model_validate_json(payload)
    except SchemaValidationError as e:
        raise ValidationError("Malformed webhook envelope", details={"errors": e.errors(include_url=False, include_context=False, include_input=False)}) from e
    if envelope.type not in KNOWN_EVENT_TYPES:
        return envelope
    try:
        return _KNOWN_EVENT_ADAPTER.validate_json(payload)
    except SchemaValidationError as e:
        raise ValidationError(
            f"Malformed {envelope.type} event",
            details={"event_id": envelope.id, "errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e
