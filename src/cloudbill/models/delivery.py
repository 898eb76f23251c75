from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DeliveryOutcome(Enum):
    DELIVERED = "DELIVERED"        # 2xx
    REJECTED = "REJECTED"          # response received, 3xx/4xx
    SERVER_ERROR = "SERVER_ERROR"  # response received, 5xx
    NO_RESPONSE = "NO_RESPONSE"    # timeout, DNS, refused, redirect loop
    INVALID = "INVALID"            # failed validation, nothing was sent
    DISABLED = "DISABLED"


@dataclass
class WebhookTarget:
    url: str
    body: dict | None = None
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    event_id: str | None = None


@dataclass
class DeliveryResult:
    success: bool
    outcome: DeliveryOutcome
    status_code: int | None = None
    response: Any = None
    error: str | None = None
    attempts: int = 1

    def to_dict(self, include_attempts: bool = False) -> dict:
        data: dict[str, Any] = {"success": self.success}
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        if self.response is not None:
            data["response"] = self.response
        if self.error is not None:
            data["error"] = self.error
        if include_attempts:
            data["attempts"] = self.attempts
        return data


@dataclass
class DeliveryAttempt:
    attempt_id: str
    event_id: str | None
    url: str  # sanitized, never carries the query string
    method: str
    status_code: int | None
    outcome: DeliveryOutcome
    timestamp: datetime
    response_time_ms: float
    attempt_number: int = 1
    error: str | None = None
