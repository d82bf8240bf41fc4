from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from conftest import BASE_TIME

from docworker.config import DocWorkerConfig
from docworker.errors import ConfigurationError
from docworker.events import InProcessEventBus, RedisEventBus, create_event_bus, publish_event
from docworker.models import EVENT_FINALIZED, Event


def test_in_process_bus_delivers_to_topic_subscribers() -> None:
    bus = InProcessEventBus()
    received: list[str] = []
    other: list[str] = []
    bus.subscribe("events", received.append)
    bus.subscribe("other", other.append)

    event = Event(type=EVENT_FINALIZED, session_id="s1", timestamp=BASE_TIME)
    publish_event(bus, "events", event)
    bus.publish("events", "raw text")

    assert json.loads(received[0])["sessionId"] == "s1"
    assert received[1] == "raw text"
    assert other == []


def test_in_process_bus_isolates_handler_errors() -> None:
    bus = InProcessEventBus()
    received: list[str] = []

    def broken(message: str) -> None:
        raise ValueError("bad handler")

    bus.subscribe("events", broken)
    bus.subscribe("events", received.append)
    bus.publish("events", {"a": 1})

    assert received == ['{"a": 1}']


def test_in_process_bus_close() -> None:
    bus = InProcessEventBus()
    assert bus.connected
    bus.close()
    assert not bus.connected
    with pytest.raises(RuntimeError):
        bus.publish("events", "x")


def test_redis_bus_publish_and_ping() -> None:
    client = MagicMock()
    client.ping.return_value = True
    bus = RedisEventBus("redis://example:6379", client=client)

    bus.publish("events", {"type": "session.finalized"})

    client.publish.assert_called_once_with("events", '{"type": "session.finalized"}')
    assert bus.connected
    client.ping.side_effect = ConnectionError("down")
    assert not bus.connected


def test_redis_bus_subscribe_dispatches_message_data() -> None:
    client = MagicMock()
    pubsub = client.pubsub.return_value
    bus = RedisEventBus("redis://example:6379", client=client)
    received: list[str] = []

    bus.subscribe("events", received.append)

    client.pubsub.assert_called_once_with(ignore_subscribe_messages=True)
    pubsub.run_in_thread.assert_called_once_with(sleep_time=0.1, daemon=True)
    dispatch = pubsub.subscribe.call_args.kwargs["events"]
    dispatch({"type": "message", "data": "hello"})
    dispatch({"type": "message", "data": b"bytes"})
    dispatch({"type": "message", "data": 42})
    assert received == ["hello", "bytes"]

    bus.close()
    pubsub.run_in_thread.return_value.stop.assert_called_once()
    pubsub.close.assert_called_once()
    client.close.assert_called_once()


def test_redis_bus_builds_client_from_url() -> None:
    with patch("redis.Redis.from_url") as from_url:
        bus = RedisEventBus("redis://cache:6379/1")
    from_url.assert_called_once_with(
        "redis://cache:6379/1", decode_responses=True, socket_connect_timeout=5
    )
    assert bus.url == "redis://cache:6379/1"


def test_create_event_bus() -> None:
    assert isinstance(create_event_bus(DocWorkerConfig()), InProcessEventBus)
    with patch("redis.Redis.from_url"):
        assert isinstance(
            create_event_bus(DocWorkerConfig(bus_backend="redis")), RedisEventBus
        )
    with pytest.raises(ConfigurationError):
        create_event_bus(DocWorkerConfig(bus_backend="redis", redis_url=""))
