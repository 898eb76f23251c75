import json
import threading
import time
from collections import deque
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Self

from cloudbill.delivery.signer import SIGNATURE_HEADER, WebhookSigner


class _EndpointHandler(BaseHTTPRequestHandler):
    """Records whatever it is sent and answers with the configured status."""

    def _handle(self):
        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length) if content_length else b""

        config = self.server.config  # type: ignore[attr-defined]

        if config["redirect_loop"]:
            self.send_response(302)
            self.send_header("Location", self.path)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        if config["response_delay"] > 0:
            time.sleep(config["response_delay"])

        with config["lock"]:
            config["received"].append(
                {
                    "method": self.command,
                    "path": self.path,
                    "headers": dict(self.headers),
                    "body": body,
                }
            )
            if config["queued_codes"]:
                code = config["queued_codes"].popleft()
            else:
                code = config["response_code"]

        signer = config["signer"]
        if signer is not None:
            header = self.headers.get(SIGNATURE_HEADER, "")
            if not header or not signer.verify(body, header):
                code = 401

        payload = json.dumps({"status": "ok" if 200 <= code < 300 else "error"}).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _handle

    def log_message(self, format, *args):
        """Suppress default request logging."""
        pass


class WebhookEndpointServer:
    """Configurable local HTTP server standing in for a third-party webhook endpoint."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0, secret: str | None = None):
        self._host = host
        self._port = port
        self._config = {
            "response_code": 200,
            "queued_codes": deque(),
            "response_delay": 0,
            "redirect_loop": False,
            "signer": WebhookSigner(secret) if secret else None,
            "received": [],
            "lock": threading.Lock(),
        }
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def set_response_code(self, code: int) -> Self:
        self._config["response_code"] = code
        return self

    def queue_response_codes(self, *codes: int) -> Self:
        """Answer the next requests with ``codes`` in order, then fall back to the default."""
        with self._config["lock"]:
            self._config["queued_codes"].extend(codes)
        return self

    def set_response_delay(self, seconds: float) -> Self:
        self._config["response_delay"] = seconds
        return self

    def enable_redirect_loop(self) -> Self:
        self._config["redirect_loop"] = True
        return self

    def enable_signature_verification(self, secret: str) -> Self:
        self._config["signer"] = WebhookSigner(secret)
        return self

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self._host, self._port), _EndpointHandler)
        self._server.config = self._config  # type: ignore[attr-defined]
        # Get the actual port (useful when port=0)
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}/webhook"

    @property
    def port(self) -> int:
        return self._port

    def get_requests(self) -> list[dict]:
        with self._config["lock"]:
            return list(self._config["received"])

    def get_request_count(self) -> int:
        with self._config["lock"]:
            return len(self._config["received"])

    def clear(self) -> None:
        with self._config["lock"]:
            self._config["received"].clear()
            self._config["queued_codes"].clear()
