"""Translate service calls into ``{success, data | error}`` response envelopes.

Each handler returns ``(status_code, body)``; the HTTP layer only has to
serialize the body.
"""

import logging

from cloudbill.delivery.engine import WebhookDeliveryEngine
from cloudbill.exceptions import CloudbillError, ValidationError
from cloudbill.models.delivery import WebhookTarget
from cloudbill.schemas import RefundCreateRequest, WebhookSendRequest, parse_request
from cloudbill.services.refunds import RefundService

_log = logging.getLogger(__name__)


def success(data, status_code: int = 200) -> tuple[int, dict]:
    return status_code, {"success": True, "data": data}


def failure(error: CloudbillError) -> tuple[int, dict]:
    if error.status_code >= 500:
        _log.error(error.message, extra=error.context)
    else:
        _log.warning(error.message, extra=error.context)
    return error.status_code, {"success": False, "error": error.to_dict()}


def require_tenant(tenant_id: str | None) -> str:
    if not tenant_id:
        raise ValidationError("Tenant ID is required", {"X-Tenant-ID": "Header is required"})
    return tenant_id


def create_refund_response(service: RefundService, tenant_id: str | None, payload) -> tuple[int, dict]:
    try:
        tenant_id = require_tenant(tenant_id)
        request = parse_request(RefundCreateRequest, payload)
        refund = service.create_refund(
            tenant_id,
            request.payment_id,
            amount=request.amount,
            reason=request.reason,
            metadata=request.metadata,
        )
    except CloudbillError as e:
        return failure(e)
    return success(refund, 201)


def send_webhook_response(engine: WebhookDeliveryEngine, payload) -> tuple[int, dict]:
    """Deliver a webhook; the delivery outcome is data, so this is 200 unless the request is invalid."""
    try:
        request = parse_request(WebhookSendRequest, payload)
    except CloudbillError as e:
        return failure(e)

    target = WebhookTarget(
        url=request.url,
        method=request.method,
        headers=request.headers or {},
        body=request.body,
    )
    if request.retry:
        result = engine.send_with_retry(target, max_retries=request.max_retries)
        return success(result.to_dict(include_attempts=True))
    return success(engine.send_once(target).to_dict())
