from cloudbill.config import BACKOFF_CAP_MS, WebhookSettings


def next_delay(
    attempt_index: int,
    base_delay_ms: float,
    multiplier: float,
    cap_ms: float = BACKOFF_CAP_MS,
) -> float:
    """Delay in ms before retry number ``attempt_index + 1``.

    ``min(base * multiplier ** attempt_index, cap)``. Index 0 is the wait
    between the first and second attempts; there is no wait before the first.
    """
    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")
    try:
        delay = base_delay_ms * multiplier ** attempt_index
    except OverflowError:
        return float(cap_ms)
    return float(min(delay, cap_ms))


class RetryPolicy:
    """Retry decisions and exponential backoff for webhook delivery."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: float = 2000,
        multiplier: float = 2.0,
        cap_ms: float = BACKOFF_CAP_MS,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.multiplier = multiplier
        self.cap_ms = cap_ms

    @classmethod
    def from_settings(cls, settings: WebhookSettings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay_ms=settings.retry_delay_ms,
            multiplier=settings.backoff_multiplier,
        )

    def should_retry(self, status_code: int | None) -> bool:
        """Determine if a delivery should be retried based on status code.

        Returns True for:
        - None (no response: timeout, connection error)
        - 5xx server errors and any other non-2xx, non-4xx status
        Returns False for:
        - 2xx success
        - 4xx client errors, which are not expected to go away on their own
        """
        if status_code is None:
            return True
        if 200 <= status_code < 300:
            return False
        if 400 <= status_code < 500:
            return False
        return True

    def next_delay(self, retry_index: int) -> float:
        return next_delay(retry_index, self.base_delay_ms, self.multiplier, self.cap_ms)

    def has_attempts_remaining(self, retry_count: int, max_retries: int | None = None) -> bool:
        limit = self.max_retries if max_retries is None else max_retries
        return retry_count < limit
