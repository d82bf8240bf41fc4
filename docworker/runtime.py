from __future__ import annotations

import logging
import signal
import threading
from types import FrameType

from . import __version__
from .config import DocWorkerConfig
from .events import EventBus, create_event_bus
from .generation import GenerationClient, TextGenerator
from .health import HealthServer
from .idle_scanner import IdleSessionScanner
from .store import SessionStore
from .worker import DocumentationWorker

logger = logging.getLogger(__name__)


class WorkerRuntime:
    """Owns the long-running components and their start/stop order."""

    def __init__(
        self,
        config: DocWorkerConfig,
        *,
        store: SessionStore | None = None,
        bus: EventBus | None = None,
        generator: TextGenerator | None = None,
    ) -> None:
        self.config = config
        self.store = store or SessionStore(config.db_path)
        self.bus = bus or create_event_bus(config)
        self.generator = generator or GenerationClient(config)
        self.worker = DocumentationWorker(config, self.store, self.bus, self.generator)
        self.scanner = IdleSessionScanner(config, self.store, self.bus)
        self.health: HealthServer | None = None
        if config.health_enabled:
            self.health = HealthServer(
                self.worker, self.bus, host=config.health_host, port=config.health_port
            )
        self._stop = threading.Event()
        self._started = False
        self._stopped = False
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        logger.info(
            "docworker starting",
            extra={
                "version": __version__,
                "db_path": str(self.config.db_path),
                "bus": self.config.bus_backend,
                "basic_model": self.config.basic_model,
                "premium_model": self.config.premium_model,
            },
        )
        self.worker.connect()
        self.worker.retry.start()
        self.scanner.start()
        if self.health is not None:
            self.health.start()
        logger.info(
            "docworker ready",
            extra={
                "topic": self.config.events_topic,
                "idle_timeout_minutes": self.config.idle_timeout_minutes,
                "batch_size": self.config.batch_size,
                "batch_window_seconds": self.config.batch_window_seconds,
            },
        )

    def request_stop(self, signum: int | None = None, frame: FrameType | None = None) -> None:
        if signum is not None:
            logger.info("shutdown requested", extra={"signal": signum})
        self._stop.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._stop.wait(timeout)

    def shutdown(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        logger.info("docworker shutting down")
        self.scanner.stop()
        self.worker.retry.stop()
        self.worker.shutdown()
        if self.health is not None:
            self.health.stop()
        self.bus.close()
        self.store.close()
        logger.info("docworker stopped")

    def run_forever(self) -> None:
        signal.signal(signal.SIGTERM, self.request_stop)
        signal.signal(signal.SIGINT, self.request_stop)
        self.start()
        try:
            self._stop.wait()
        finally:
            self.shutdown()
