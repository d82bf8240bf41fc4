from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from .config import DocWorkerConfig
from .errors import ConfigurationError
from .models import Event

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]


class EventBus(Protocol):
    @property
    def connected(self) -> bool: ...

    def publish(self, topic: str, payload: dict[str, Any] | str) -> None: ...

    def subscribe(self, topic: str, handler: MessageHandler) -> None: ...

    def close(self) -> None: ...


def _encode(payload: dict[str, Any] | str) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False)


class InProcessEventBus:
    """Synchronous in-memory pub/sub used for single-process runs and tests."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def connected(self) -> bool:
        return not self._closed

    def publish(self, topic: str, payload: dict[str, Any] | str) -> None:
        if self._closed:
            raise RuntimeError("event bus is closed")
        message = _encode(payload)
        with self._lock:
            handlers = list(self._handlers.get(topic, ()))
        for handler in handlers:
            try:
                handler(message)
            except Exception as exc:
                logger.exception("event handler failed", extra={"topic": topic}, exc_info=exc)

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

    def close(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._closed = True


class RedisEventBus:
    """Redis pub/sub transport.

    Subscriptions are served by a redis-py listener thread; handlers receive the
    decoded message body as a string.
    """

    def __init__(self, url: str, *, client: Any | None = None) -> None:
        if client is None:
            import redis

            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
        self.url = url
        self._client = client
        self._pubsub: Any | None = None
        self._listener: Any | None = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        try:
            return bool(self._client.ping())
        except Exception as exc:
            logger.warning("redis ping failed", extra={"error": str(exc)})
            return False

    def publish(self, topic: str, payload: dict[str, Any] | str) -> None:
        self._client.publish(topic, _encode(payload))

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        def _dispatch(message: dict[str, Any]) -> None:
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8", errors="replace")
            if not isinstance(data, str):
                return
            try:
                handler(data)
            except Exception as exc:
                logger.exception(
                    "event handler failed", extra={"topic": topic}, exc_info=exc
                )

        with self._lock:
            if self._pubsub is None:
                self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{topic: _dispatch})
            if self._listener is None:
                self._listener = self._pubsub.run_in_thread(sleep_time=0.1, daemon=True)
        logger.info("subscribed to redis topic", extra={"topic": topic})

    def close(self) -> None:
        with self._lock:
            if self._listener is not None:
                self._listener.stop()
                self._listener = None
            if self._pubsub is not None:
                self._pubsub.close()
                self._pubsub = None
        self._client.close()


def create_event_bus(config: DocWorkerConfig) -> EventBus:
    if config.bus_backend == "memory":
        return InProcessEventBus()
    if config.bus_backend == "redis":
        if not config.redis_url:
            raise ConfigurationError("redis_url is required for the redis bus")
        return RedisEventBus(config.redis_url)
    raise ConfigurationError("unknown bus backend", {"bus_backend": config.bus_backend})


def publish_event(bus: EventBus, topic: str, event: Event) -> None:
    bus.publish(topic, event.to_dict())
