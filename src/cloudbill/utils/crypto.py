import hashlib
import hmac
import time


def generate_signature(body: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 over "<timestamp>.<body>", hex encoded."""
    message = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(
        secret.encode("utf-8"),
        message,
        hashlib.sha256,
    ).hexdigest()


def build_signature_header(body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Provider-format signature header: ``t=<unix>,v1=<hex>``."""
    if timestamp is None:
        timestamp = int(time.time())
    return f"t={timestamp},v1={generate_signature(body, secret, timestamp)}"


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp = None
    signatures = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def verify_signature_header(
    body: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Check a ``t=…,v1=…`` header against the exact body bytes."""
    timestamp, signatures = parse_signature_header(header or "")
    if timestamp is None or not signatures:
        return False
    if now is None:
        now = time.time()
    if tolerance_seconds and abs(now - timestamp) > tolerance_seconds:
        return False
    expected = generate_signature(body, secret, timestamp)
    return any(hmac.compare_digest(expected, sig) for sig in signatures)
