"""Request and response shapes for the refund, payment and webhook-send paths."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from cloudbill.exceptions import ValidationError
from cloudbill.models.payment import PaymentStatus, RefundReason, RefundStatus
from cloudbill.utils.money import as_number
from cloudbill.utils.validators import (
    ALLOWED_WEBHOOK_METHODS,
    DISALLOWED_WEBHOOK_HEADERS,
    MAX_WEBHOOK_BODY_BYTES,
    encode_webhook_body,
    is_valid_url,
    normalize_currency,
    validate_amount,
)


def _checked_amount(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if value.as_tuple().exponent < -2:
        raise ValueError("Amount cannot have more than 2 decimal places")
    try:
        return validate_amount(value)
    except ValidationError as e:
        raise ValueError(e.errors["amount"]) from None


class RefundCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payment_id: str = Field(min_length=1)
    amount: Decimal | None = None
    reason: RefundReason | None = None
    metadata: dict[str, str] | None = None

    @field_validator("amount")
    @classmethod
    def _amount(cls, value: Decimal | None) -> Decimal | None:
        return _checked_amount(value)

    @field_validator("reason")
    @classmethod
    def _reason(cls, value: RefundReason | None) -> RefundReason | None:
        if value is RefundReason.OTHER:
            allowed = ", ".join(r.value for r in RefundReason if r is not RefundReason.OTHER)
            raise ValueError(f"Refund reason must be one of: {allowed}")
        return value


class PaymentIntentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal
    currency: str | None = None
    invoice_id: str | None = None
    subscription_id: str | None = None
    payment_method_id: str | None = None
    description: str | None = Field(None, max_length=1000)
    metadata: dict[str, str] | None = None

    @field_validator("amount")
    @classmethod
    def _amount(cls, value: Decimal | None) -> Decimal | None:
        return _checked_amount(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            return normalize_currency(value)
        except ValidationError as e:
            raise ValueError(e.errors["currency"]) from None


class WebhookSendRequest(BaseModel):
    url: str
    method: str = "POST"
    headers: dict[str, str] | None = None
    body: dict[str, Any] | None = None
    retry: bool = False
    max_retries: int | None = Field(None, ge=0, le=10)

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        if not is_valid_url(value):
            raise ValueError("Webhook URL must be a valid http or https URL")
        return value

    @field_validator("method")
    @classmethod
    def _method(cls, value: str) -> str:
        if value.upper() not in ALLOWED_WEBHOOK_METHODS:
            raise ValueError(f"Invalid HTTP method. Allowed methods: {', '.join(sorted(ALLOWED_WEBHOOK_METHODS))}")
        return value.upper()

    @field_validator("headers")
    @classmethod
    def _headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        for name in value or {}:
            if name.lower() in DISALLOWED_WEBHOOK_HEADERS:
                raise ValueError(f'Header "{name}" is not allowed')
        return value

    @field_validator("body")
    @classmethod
    def _body(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is not None:
            try:
                size = len(encode_webhook_body(value))
            except (TypeError, ValueError):
                raise ValueError("Webhook body must be JSON-serializable") from None
            if size > MAX_WEBHOOK_BODY_BYTES:
                raise ValueError(
                    f"Webhook body size ({size} bytes) exceeds maximum of {MAX_WEBHOOK_BODY_BYTES} bytes"
                )
        return value


class RefundRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    payment_id: str
    provider_refund_id: str
    amount: float
    currency: str
    status: RefundStatus
    reason: str | None = None
    failure_reason: str | None = None
    created_at: datetime

    @field_validator("amount", mode="before")
    @classmethod
    def _plain_amount(cls, value):
        return as_number(value)


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_payment_intent_id: str
    provider_charge_id: str | None = None
    amount: float
    currency: str
    status: PaymentStatus
    invoice_id: str | None = None
    subscription_id: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    receipt_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("amount", mode="before")
    @classmethod
    def _plain_amount(cls, value):
        return as_number(value)


class PaymentIntentCreated(BaseModel):
    payment_id: str
    provider_payment_intent_id: str
    client_secret: str | None
    amount: float
    currency: str
    status: PaymentStatus


def parse_request(model: type[BaseModel], data: Any) -> BaseModel:
    """Validate ``data`` against ``model``, raising the package ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = {}
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"]) or "body"
            errors.setdefault(field, err["msg"].removeprefix("Value error, "))
        raise ValidationError("Validation failed", errors) from e
