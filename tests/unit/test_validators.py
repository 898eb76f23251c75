from decimal import Decimal

import pytest

from cloudbill.exceptions import ValidationError
from cloudbill.models.payment import RefundReason
from cloudbill.utils.validators import (
    is_valid_amount,
    is_valid_currency,
    is_valid_email,
    is_valid_phone,
    is_valid_url,
    normalize_currency,
    sanitize_url,
    validate_amount,
    validate_refund_reason,
    webhook_request_errors,
)


class TestUrlValidation:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/hook",
            "http://localhost:8080/webhook",
            "HTTPS://EXAMPLE.COM",
            "http://127.0.0.1:5000/a?b=c",
        ],
    )
    def test_valid_urls(self, url):
        assert is_valid_url(url) is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "url",
        [
            "ftp://example.com/file",
            "example.com/hook",
            "//example.com",
            "javascript:alert(1)",
            "http://",
            "http://host:notaport/",
            "",
            None,
            42,
        ],
    )
    def test_invalid_urls(self, url):
        assert is_valid_url(url) is False


class TestSanitizeUrl:
    SAMPLES = [
        "https://x.com/a?token=secret",
        "https://x.com/a",
        "http://host:9000/path/to?x=1&y=2#frag",
        "not a url",
        "",
        "http://[::1",
        "mailto:someone@example.com",
    ]

    @pytest.mark.unit
    def test_strips_query_string(self):
        result = sanitize_url("https://x.com/a?token=secret")
        assert result == "https://x.com/a"
        assert "secret" not in result

    @pytest.mark.unit
    @pytest.mark.parametrize("url", SAMPLES)
    def test_idempotent(self, url):
        once = sanitize_url(url)
        assert sanitize_url(once) == once

    @pytest.mark.unit
    @pytest.mark.parametrize("url", ["not a url", "http://[::1", ""])
    def test_unparseable_returned_unchanged(self, url):
        assert sanitize_url(url) == url

    @pytest.mark.unit
    def test_non_string_returned_unchanged(self):
        assert sanitize_url(None) is None


class TestCurrencyAndAmount:
    @pytest.mark.unit
    @pytest.mark.parametrize("code", ["usd", "EUR", "gbp", "jpy", "inr"])
    def test_supported_currency(self, code):
        assert is_valid_currency(code) is True

    @pytest.mark.unit
    @pytest.mark.parametrize("code", ["us", "usdd", "xyz", "", None])
    def test_unsupported_currency(self, code):
        assert is_valid_currency(code) is False

    @pytest.mark.unit
    def test_normalize_currency_lowercases(self):
        assert normalize_currency("USD") == "usd"

    @pytest.mark.unit
    def test_normalize_currency_reports_field(self):
        with pytest.raises(ValidationError) as exc:
            normalize_currency("xyz")
        assert "currency" in exc.value.errors

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["0.01", 1, 19.99, "999999.99", Decimal("40")])
    def test_valid_amounts(self, value):
        assert is_valid_amount(value) is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value", [0, -5, "1000000.00", "abc", None, True, float("nan"), "1e30", Decimal("1E+30")]
    )
    def test_invalid_amounts(self, value):
        assert is_valid_amount(value) is False

    @pytest.mark.unit
    def test_validate_amount_is_exact_decimal(self):
        assert validate_amount(19.99) == Decimal("19.99")
        assert validate_amount("10") == Decimal("10.00")

    @pytest.mark.unit
    def test_validate_amount_huge_value_is_field_error(self):
        with pytest.raises(ValidationError) as exc:
            validate_amount(Decimal("1E+30"))
        assert "amount" in exc.value.errors

    @pytest.mark.unit
    @pytest.mark.parametrize("reason", ["duplicate", "fraudulent", "requested_by_customer", "other"])
    def test_valid_refund_reasons(self, reason):
        assert validate_refund_reason(reason) is RefundReason(reason)

    @pytest.mark.unit
    def test_refund_reason_optional(self):
        assert validate_refund_reason(None) is None

    @pytest.mark.unit
    def test_unknown_refund_reason(self):
        with pytest.raises(ValidationError) as exc:
            validate_refund_reason("because")
        assert "reason" in exc.value.errors


class TestContactFormats:
    @pytest.mark.unit
    @pytest.mark.parametrize("email", ["a@b.co", "first.last@example.com"])
    def test_valid_email(self, email):
        assert is_valid_email(email) is True

    @pytest.mark.unit
    @pytest.mark.parametrize("email", ["no-at.example.com", "a@b", "a b@c.com", "", None])
    def test_invalid_email(self, email):
        assert is_valid_email(email) is False

    @pytest.mark.unit
    @pytest.mark.parametrize("phone", ["+14155552671", "(415) 555-2671 0", "4155552671"])
    def test_valid_phone(self, phone):
        assert is_valid_phone(phone) is True

    @pytest.mark.unit
    @pytest.mark.parametrize("phone", ["12345", "+0123456789", "phone", None])
    def test_invalid_phone(self, phone):
        assert is_valid_phone(phone) is False


class TestWebhookRequestErrors:
    @pytest.mark.unit
    def test_valid_request_has_no_errors(self):
        assert webhook_request_errors("https://example.com", "post", {"X-Id": "1"}, {"a": 1}) == {}

    @pytest.mark.unit
    def test_collects_field_errors(self):
        errors = webhook_request_errors("ftp://example.com", "TRACE", {"Host": "evil"}, {"a": 1})
        assert set(errors) == {"url", "method", "headers"}

    @pytest.mark.unit
    @pytest.mark.parametrize("header", ["host", "Connection", "TRANSFER-ENCODING"])
    def test_disallowed_headers_case_insensitive(self, header):
        errors = webhook_request_errors("https://example.com", "POST", {header: "x"}, None)
        assert "headers" in errors

    @pytest.mark.unit
    def test_oversized_body(self):
        errors = webhook_request_errors("https://example.com", "POST", None, {"blob": "x" * 100_001})
        assert "body" in errors

    @pytest.mark.unit
    def test_unserializable_body(self):
        circular = {}
        circular["self"] = circular
        for body in ({(1, 2): "x"}, circular, {"amount": float("nan")}):
            errors = webhook_request_errors("https://example.com", "POST", None, body)
            assert errors == {"body": "Webhook body must be JSON-serializable"}
