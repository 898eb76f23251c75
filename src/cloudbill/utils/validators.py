"""Pure validation predicates used by the delivery engine and the ledger paths."""

import json
import re
from decimal import Decimal
from urllib.parse import urlsplit, urlunsplit

from cloudbill.exceptions import ValidationError
from cloudbill.models.payment import RefundReason
from cloudbill.utils.money import to_decimal

ALLOWED_URL_SCHEMES = {"http", "https"}
ALLOWED_WEBHOOK_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
DISALLOWED_WEBHOOK_HEADERS = {"host", "connection", "transfer-encoding"}
MAX_WEBHOOK_BODY_BYTES = 100_000

SUPPORTED_CURRENCIES = {"usd", "eur", "gbp", "cad", "aud", "jpy", "inr"}
MAX_AMOUNT = Decimal("999999.99")

_CURRENCY_RE = re.compile(r"^[a-z]{3}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{9,14}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")


def is_valid_url(url) -> bool:
    """True only for syntactically valid http/https URLs with a host."""
    if not isinstance(url, str) or not url:
        return False
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return False
    return parts.scheme.lower() in ALLOWED_URL_SCHEMES and bool(parts.hostname)


def sanitize_url(url):
    """Strip the query string for logging. Unparseable input is returned as-is."""
    if not isinstance(url, str):
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", parts.fragment))


def is_valid_currency(code) -> bool:
    return isinstance(code, str) and bool(_CURRENCY_RE.match(code.lower())) and (
        code.lower() in SUPPORTED_CURRENCIES
    )


def normalize_currency(code: str) -> str:
    if not isinstance(code, str) or not _CURRENCY_RE.match(code.lower()):
        raise ValidationError(
            "Invalid currency",
            {"currency": "Currency must be a 3-letter ISO code (e.g., usd, eur)"},
        )
    if code.lower() not in SUPPORTED_CURRENCIES:
        supported = ", ".join(sorted(SUPPORTED_CURRENCIES))
        raise ValidationError(
            "Unsupported currency",
            {"currency": f"Unsupported currency. Supported currencies: {supported}"},
        )
    return code.lower()


def is_valid_amount(value, maximum: Decimal = MAX_AMOUNT) -> bool:
    try:
        validate_amount(value, maximum=maximum)
    except ValidationError:
        return False
    return True


def validate_amount(value, field: str = "amount", maximum: Decimal = MAX_AMOUNT) -> Decimal:
    """Normalize an amount to 2 places and check 0 < amount <= maximum."""
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError("Invalid amount", {field: "Amount must be a valid number"}) from None
    if amount <= 0:
        raise ValidationError("Invalid amount", {field: "Amount must be greater than 0"})
    if amount > maximum:
        raise ValidationError("Invalid amount", {field: "Amount exceeds maximum allowed value"})
    return amount


def validate_refund_reason(value) -> RefundReason | None:
    if value is None:
        return None
    try:
        return RefundReason(value)
    except ValueError:
        allowed = ", ".join(r.value for r in RefundReason)
        raise ValidationError(
            "Invalid refund reason", {"reason": f"Refund reason must be one of: {allowed}"}
        ) from None


def is_valid_email(value) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def is_valid_phone(value) -> bool:
    """E.164-style numbers; spaces, dashes and parentheses are ignored."""
    if not isinstance(value, str):
        return False
    return bool(_PHONE_RE.match(_PHONE_STRIP_RE.sub("", value)))


def encode_webhook_body(body) -> bytes:
    """Serialize a webhook body to the exact bytes that are sent and signed.

    Raises TypeError or ValueError when the body is not representable as
    strict JSON (non-string keys, circular references, NaN or infinity).
    """
    return json.dumps(body, default=str, allow_nan=False).encode("utf-8")


def webhook_request_errors(url, method: str | None, headers: dict | None, body) -> dict[str, str]:
    """Field-level problems with an outbound webhook request; empty when valid."""
    errors: dict[str, str] = {}
    if not is_valid_url(url):
        errors["url"] = "Webhook URL must be a valid http or https URL"
    if method is not None and str(method).upper() not in ALLOWED_WEBHOOK_METHODS:
        allowed = ", ".join(sorted(ALLOWED_WEBHOOK_METHODS))
        errors["method"] = f"Invalid HTTP method. Allowed methods: {allowed}"
    if headers:
        blocked = [k for k in headers if k.lower() in DISALLOWED_WEBHOOK_HEADERS]
        if blocked:
            errors["headers"] = f'Header "{blocked[0]}" is not allowed'
    if body is not None:
        if not isinstance(body, dict):
            errors["body"] = "Webhook body must be an object"
        else:
            try:
                size = len(encode_webhook_body(body))
            except (TypeError, ValueError):
                errors["body"] = "Webhook body must be JSON-serializable"
                return errors
            if size > MAX_WEBHOOK_BODY_BYTES:
                errors["body"] = (
                    f"Webhook body size ({size} bytes) exceeds maximum of "
                    f"{MAX_WEBHOOK_BODY_BYTES} bytes"
                )
    return errors
