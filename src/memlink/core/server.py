"""Simple HTTP JSON endpoint over the memlink operations"""

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from memlink.core.cli import build_runtime
from memlink.core.outcomes import ERROR, ToolOutcome

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation_error": 400,
    "unknown_operation": 400,
    "storage_error": 500,
}


def http_status(outcome: ToolOutcome) -> int:
    """OK and NOT_FOUND are both normal results (200); errors map by type."""
    if outcome.status != ERROR:
        return 200
    return ERROR_STATUS.get(outcome.error_type or "", 500)


class MemlinkServer:
    """memlink server that keeps one store open across requests"""

    def __init__(self, config: dict[str, Any], host: str = "127.0.0.1", port: int = 8765):
        """Initialize server with config.

        Args:
            config: memlink configuration dict
            host: Server host (default: 127.0.0.1)
            port: Server port (default: 8765)
        """
        self.config = config
        self.host = host
        self.port = port
        self.storage, self.graph = build_runtime(config)
        logger.info("Store opened: %s", self.storage.location)

    def handle_call(self, request_data: Any) -> tuple[int, dict[str, Any]]:
        """Run one {"operation", "arguments"} request.

        Returns:
            Tuple of (HTTP status, response body)
        """
        if not isinstance(request_data, dict) or not request_data.get("operation"):
            outcome = ToolOutcome.error("validation_error", "Missing 'operation' parameter")
        else:
            outcome = self.graph.call(request_data["operation"], request_data.get("arguments"))
        return http_status(outcome), outcome.to_dict()

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "backend": self.config["storage"]["backend"],
            "store": self.storage.location,
        }

    def make_handler(self):
        server_instance = self

        class RequestHandler(BaseHTTPRequestHandler):
            def _send_json(self, status: int, body: dict[str, Any]) -> None:
                payload = json.dumps(body).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def do_POST(self):
                if self.path == "/call":
                    content_length = int(self.headers.get("Content-Length") or 0)
                    body = self.rfile.read(content_length)
                    try:
                        request_data = json.loads(body.decode("utf-8") or "null")
                    except (UnicodeDecodeError, json.JSONDecodeError) as e:
                        self._send_json(400, {"status": ERROR, "message": f"Invalid JSON: {e}"})
                        return

                    status, response = server_instance.handle_call(request_data)
                    self._send_json(status, response)

                elif self.path == "/health":
                    self._send_json(200, server_instance.health())

                else:
                    self.send_error(404, "Endpoint not found")

            def do_GET(self):
                if self.path == "/health":
                    self._send_json(200, server_instance.health())
                else:
                    self.send_error(404, "Endpoint not found")

            def log_message(self, format, *args):
                logger.debug("%s - %s", self.address_string(), format % args)

        return RequestHandler

    def start(self):
        """Start the HTTP server."""
        server = ThreadingHTTPServer((self.host, self.port), self.make_handler())
        logger.info("memlink server running on http://%s:%d", self.host, self.port)
        logger.info("Endpoints: POST /call, GET|POST /health")

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down server...")
        finally:
            server.server_close()
            self.storage.close()
            logger.info("Server stopped.")
