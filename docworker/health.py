from __future__ import annotations

import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlparse

from . import __version__
from .events import EventBus
from .worker import DocumentationWorker

logger = logging.getLogger(__name__)

WORKER_NAME = "docworker"


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict[str, Any],
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def build_health_payload(worker: DocumentationWorker, bus: EventBus) -> dict[str, Any]:
    stats = worker.stats()
    config = worker.config
    return {
        "status": "ok",
        "worker": WORKER_NAME,
        "version": __version__,
        "bus": "connected" if bus.connected and worker.subscribed else "disconnected",
        "pendingBatch": stats["pending_batch_count"],
        "processedTotal": stats["processed_total"],
        "retryQueueDepth": worker.retry.depth(),
        "deadLetterCount": worker.dead_letters.count(),
        "config": {
            "idleTimeoutMinutes": config.idle_timeout_minutes,
            "batchSize": config.batch_size,
            "batchWindowSeconds": config.batch_window_seconds,
        },
    }


def build_metrics_payload(worker: DocumentationWorker) -> dict[str, Any]:
    stats = worker.stats()
    return {
        "processed": stats["processed_total"],
        "failed": stats["failed_total"],
        "skipped": stats["skipped_total"],
        "retried": stats["retried_total"],
        "deadLettered": stats["dead_lettered_total"],
        "pending": stats["pending_batch_count"],
        "retryQueueDepth": worker.retry.depth(),
        "deadLetterCount": worker.dead_letters.count(),
        "uptime": round(time.time() - worker.started_at, 3),
    }


class HealthHandler(BaseHTTPRequestHandler):
    server: HealthHTTPServer

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        logger.debug("health request: " + format, *args)

    def do_GET(self) -> None:  # noqa: N802
        path = urlparse(self.path).path
        try:
            if path == "/health":
                send_json_response(
                    self, build_health_payload(self.server.worker, self.server.bus)
                )
                return
            if path == "/metrics":
                send_json_response(self, build_metrics_payload(self.server.worker))
                return
        except Exception as exc:
            logger.exception("health request failed", extra={"path": path}, exc_info=exc)
            send_json_response(self, {"error": "internal server error"}, status=500)
            return
        send_json_response(self, {"error": "not found"}, status=404)


class HealthHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self, address: tuple[str, int], worker: DocumentationWorker, bus: EventBus
    ) -> None:
        super().__init__(address, HealthHandler)
        self.worker = worker
        self.bus = bus


class HealthServer:
    def __init__(
        self, worker: DocumentationWorker, bus: EventBus, *, host: str, port: int
    ) -> None:
        self.worker = worker
        self.bus = bus
        self.host = host
        self.port = port
        self._server: HealthHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = HealthHTTPServer((self.host, self.port), self.worker, self.bus)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="docworker-health", daemon=True
        )
        self._thread.start()
        logger.info("health endpoint listening", extra={"address": self.address})

    def stop(self) -> None:
        server = self._server
        self._server = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
