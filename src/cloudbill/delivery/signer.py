import time

from cloudbill.utils.crypto import build_signature_header, verify_signature_header

SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookSigner:
    """Signs outbound webhook bodies using HMAC-SHA256 over the exact bytes sent."""

    def __init__(self, secret: str, clock=time.time):
        self.secret = secret
        self._clock = clock

    def sign(self, body: bytes) -> str:
        return build_signature_header(body, self.secret, int(self._clock()))

    def verify(self, body: bytes, header: str, tolerance_seconds: int = 300) -> bool:
        return verify_signature_header(
            body, header, self.secret, tolerance_seconds=tolerance_seconds, now=self._clock()
        )
