"""Error taxonomy shared by the ledger, provider wrapper and services."""

from decimal import Decimal


class CloudbillError(Exception):
    """Base class; carries an HTTP-equivalent status and log context."""

    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(CloudbillError):
    status_code = 400

    def __init__(self, message: str, errors: dict[str, str] | None = None, **context):
        super().__init__(message, **context)
        self.errors = dict(errors or {})

    def to_dict(self) -> dict:
        return {"message": self.message, "details": self.errors}


class NotFoundError(CloudbillError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str, tenant_id: str | None = None):
        super().__init__(f"{entity} not found", entity_id=entity_id, tenant_id=tenant_id)
        self.entity = entity
        self.entity_id = entity_id


class DomainError(CloudbillError):
    """Expected business-rule violation the caller can correct."""

    status_code = 422


class RefundExceedsAvailableError(DomainError):
    def __init__(self, requested: Decimal, available: Decimal, **context):
        super().__init__(
            f"Refund amount ({requested}) exceeds available amount ({available})",
            **context,
        )
        self.requested = requested
        self.available = available


class DependencyUnavailableError(CloudbillError):
    status_code = 503

    def __init__(self, dependency: str, reason: str):
        super().__init__(f"{dependency} unavailable: {reason}", dependency=dependency)
        self.dependency = dependency


class ProviderError(CloudbillError):
    """Payment provider call failed; the SDK exception is chained."""

    status_code = 502


class SignatureVerificationError(CloudbillError):
    status_code = 400
