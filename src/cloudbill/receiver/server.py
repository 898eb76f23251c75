"""Inbound HTTP receiver for provider webhooks and the refund/webhook-send routes.

Provider webhooks are verified against the raw request bytes and answered
with 200 straight away; reconciliation runs on a background worker so slow
ledger work never makes the provider retry.
"""

import json
import logging
import queue
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from cloudbill import api
from cloudbill.config import Settings, configure_logging, get_settings
from cloudbill.delivery.engine import WebhookDeliveryEngine
from cloudbill.exceptions import (
    CloudbillError,
    DependencyUnavailableError,
    SignatureVerificationError,
    ValidationError,
)
from cloudbill.ledger.db import Database
from cloudbill.provider.client import StripeProvider
from cloudbill.provider.verifier import EventVerifier, StripeEventVerifier
from cloudbill.reconciliation.machine import PaymentReconciler
from cloudbill.services.refunds import RefundService

_log = logging.getLogger(__name__)

PROVIDER_WEBHOOK_PATHS = {"/webhooks/stripe", "/webhook"}
_STOP = object()


class _ReceiverHandler(BaseHTTPRequestHandler):
    def _reply(self, code: int, body: dict) -> None:
        payload = json.dumps(body, default=str).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def do_POST(self):
        content_length = int(self.headers.get("Content-Length", 0))
        # Raw bytes are kept verbatim; the signature covers exactly these
        raw = self.rfile.read(content_length) if content_length else b""
        receiver = self.server.receiver  # type: ignore[attr-defined]
        path = self.path.split("?", 1)[0]

        if path in PROVIDER_WEBHOOK_PATHS:
            self._reply(*receiver.accept_provider_event(raw, self.headers.get("Stripe-Signature")))
            return

        if path == "/refunds" and receiver.refund_service is not None:
            data = self._json(raw)
            if data is not None:
                self._reply(
                    *api.create_refund_response(
                        receiver.refund_service, self.headers.get("X-Tenant-ID"), data
                    )
                )
            return

        if path == "/webhooks/send" and receiver.delivery_engine is not None:
            data = self._json(raw)
            if data is not None:
                self._reply(*api.send_webhook_response(receiver.delivery_engine, data))
            return

        self._reply(404, {"success": False, "error": {"message": "Not found"}})

    def _json(self, raw: bytes):
        try:
            return json.loads(raw or b"{}")
        except ValueError:
            self._reply(*api.failure(ValidationError("Invalid JSON body", {"body": "Must be valid JSON"})))
            return None

    def log_message(self, format, *args):
        """Suppress default request logging."""
        pass


class ProviderWebhookServer:
    """Threaded HTTP receiver plus a single reconciliation worker."""

    def __init__(
        self,
        verifier: EventVerifier,
        reconciler: PaymentReconciler,
        refund_service: RefundService | None = None,
        delivery_engine: WebhookDeliveryEngine | None = None,
        host: str = "127.0.0.1",
        port: int = 0,
    ):
        self.verifier = verifier
        self.reconciler = reconciler
        self.refund_service = refund_service
        self.delivery_engine = delivery_engine
        self._host = host
        self._port = port
        self._queue: queue.Queue = queue.Queue()
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._worker: threading.Thread | None = None
        self.failed_events = 0

    def accept_provider_event(self, raw: bytes, signature: str | None) -> tuple[int, dict]:
        if not signature:
            _log.warning("Webhook received without signature header")
            return 400, {"error": "Missing Stripe-Signature header"}
        try:
            payload = self.verifier.verify(raw, signature)
        except SignatureVerificationError as e:
            return 400, {"error": e.message}
        except DependencyUnavailableError as e:
            return api.failure(e)

        self._queue.put(payload)
        return 200, {"received": True}

    def _work(self) -> None:
        while True:
            payload = self._queue.get()
            try:
                if payload is _STOP:
                    return
                self.reconciler.handle_payload(payload)
            except CloudbillError as e:
                self.failed_events += 1
                _log.warning("Webhook event rejected", extra={"error": e.message, **e.context})
            except Exception:
                # The provider already has its 200; keep the worker alive for the next event
                self.failed_events += 1
                _log.exception(
                    "Webhook event processing failed",
                    extra={"event_id": payload.get("id") if isinstance(payload, dict) else None},
                )
            finally:
                self._queue.task_done()

    def wait_until_idle(self, timeout: float = 5.0) -> bool:
        """Block until every accepted event has been reconciled."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def start(self) -> None:
        self._worker = threading.Thread(target=self._work, daemon=True)
        self._worker.start()
        self._server = ThreadingHTTPServer((self._host, self._port), _ReceiverHandler)
        self._server.receiver = self  # type: ignore[attr-defined]
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        _log.info("Webhook receiver listening", extra={"host": self._host, "port": self._port})

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        if self._worker:
            self._queue.put(_STOP)
            self._worker.join(timeout=5)
            self._worker = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}"

    @property
    def port(self) -> int:
        return self._port


def build_server(settings: Settings, host: str = "127.0.0.1", port: int = 8080) -> ProviderWebhookServer:
    db = Database(settings.database_url)
    db.create_all()
    provider = StripeProvider(settings.payment)
    provider.initialize()
    return ProviderWebhookServer(
        verifier=StripeEventVerifier.from_settings(settings.payment),
        reconciler=PaymentReconciler(db),
        refund_service=RefundService(db, provider),
        delivery_engine=WebhookDeliveryEngine(settings.webhook),
        host=host,
        port=port,
    )


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    _log.info("Starting receiver", extra=settings.summary())
    server = build_server(settings)
    server.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        _log.info("Shutting down receiver")
    finally:
        server.stop()


if __name__ == "__main__":
    main()
