import json
from pathlib import Path

import pytest

from docworker.config import (
    CONFIG_ENV_OVERRIDES,
    DocWorkerConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    parse_config_value,
    read_config_file,
    write_config_file,
)
from docworker.errors import ConfigurationError

CONFIG_ENV_OVERRIDES_BY_ENV = {env: key for key, env in CONFIG_ENV_OVERRIDES.items()}


def test_defaults_match_pipeline_constants() -> None:
    cfg = load_config()
    assert cfg.events_topic == "devpattern:events"
    assert cfg.batch_size == 5
    assert cfg.batch_window_seconds == 30
    assert cfg.max_retries == 3
    assert cfg.retry_delays_ms == [5000, 30000, 120000]
    assert cfg.idle_timeout_minutes == 10
    assert cfg.scan_interval_s == 60
    assert cfg.small_session_threshold == 20
    assert cfg.stage_size == 20
    assert (cfg.batch_max_tokens, cfg.single_max_tokens) == (4000, 2000)
    assert (cfg.stage_max_tokens, cfg.synthesis_max_tokens) == (500, 3000)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ConfigurationError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ConfigurationError, match="config must be an object"):
        read_config_file(config_path)


def test_write_then_load_round_trips_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    write_config_file({"batch_size": 8, "retry_delays_ms": [100, 200]}, config_path)

    assert read_config_file(config_path) == {"batch_size": 8, "retry_delays_ms": [100, 200]}
    cfg = load_config(config_path)
    assert cfg.batch_size == 8
    assert cfg.retry_delays_ms == [100, 200]


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"batch_size": 8, "events_topic": "file:topic"}))
    monkeypatch.setenv("DOCWORKER_BATCH_SIZE", "2")
    monkeypatch.setenv("DOCWORKER_RETRY_DELAYS_MS", "10, 20")

    cfg = load_config(config_path)

    assert cfg.batch_size == 2
    assert cfg.events_topic == "file:topic"
    assert cfg.retry_delays_ms == [10, 20]
    assert get_env_overrides()["batch_size"] == "2"


def test_invalid_int_env_warns_and_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCWORKER_MAX_RETRIES", "lots")
    with pytest.warns(RuntimeWarning, match="max_retries"):
        cfg = load_config()
    assert cfg.max_retries == 3


def test_api_key_falls_back_to_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic-key")
    monkeypatch.setenv("OPENAI_API_KEY", "openai-key")
    assert load_config().api_key == "anthropic-key"

    monkeypatch.setenv("DOCWORKER_PROVIDER", "openai")
    assert load_config().api_key == "openai-key"

    monkeypatch.setenv("DOCWORKER_API_KEY", "explicit")
    assert load_config().api_key == "explicit"


def test_config_path_honours_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCWORKER_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


@pytest.mark.parametrize(
    ("env", "value"),
    [
        ("DOCWORKER_BATCH_SIZE", "0"),
        ("DOCWORKER_BUS", "kafka"),
        ("DOCWORKER_PROVIDER", "cohere"),
    ],
)
def test_invalid_values_raise_configuration_error(
    monkeypatch: pytest.MonkeyPatch, env: str, value: str
) -> None:
    monkeypatch.setenv(env, value)
    with pytest.raises(ConfigurationError):
        load_config()


def test_retry_delay_clamps_to_last_entry() -> None:
    cfg = DocWorkerConfig()
    assert cfg.retry_delay_ms(1) == 5000
    assert cfg.retry_delay_ms(2) == 30000
    assert cfg.retry_delay_ms(3) == 120000
    assert cfg.retry_delay_ms(7) == 120000


def test_model_for_tier() -> None:
    cfg = DocWorkerConfig(basic_model="small", premium_model="large")
    assert cfg.model_for_tier("premium") == "large"
    assert cfg.model_for_tier("basic") == "small"
    assert cfg.model_for_tier(None) == "small"


def test_public_dict_redacts_api_key() -> None:
    data = DocWorkerConfig(api_key="sk-secret").to_public_dict()
    assert data["api_key"] == "***"
    assert "sk-secret" not in json.dumps(data)


def test_load_config_rejects_invalid_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ConfigurationError, match="invalid config json"):
        load_config(config_path)


def test_every_env_override_reaches_the_config(monkeypatch: pytest.MonkeyPatch) -> None:
    values = {
        "DOCWORKER_GENERATION_TIMEOUT_S": "30",
        "DOCWORKER_SCAN_INTERVAL_S": "15",
        "DOCWORKER_RETRY_POLL_INTERVAL_S": "2",
        "DOCWORKER_SMALL_SESSION_THRESHOLD": "12",
        "DOCWORKER_STAGE_SIZE": "8",
        "DOCWORKER_WORKER_THREADS": "6",
        "DOCWORKER_HEALTH": "off",
        "DOCWORKER_HEALTH_HOST": "127.0.0.1",
        "DOCWORKER_LOG_LEVEL": "DEBUG",
        "DOCWORKER_BASE_URL": "http://proxy.local",
    }
    for name, value in values.items():
        monkeypatch.setenv(name, value)

    cfg = load_config()

    assert cfg.generation_timeout_s == 30
    assert cfg.scan_interval_s == 15
    assert cfg.retry_poll_interval_s == 2
    assert cfg.small_session_threshold == 12
    assert cfg.stage_size == 8
    assert cfg.worker_threads == 6
    assert cfg.health_enabled is False
    assert cfg.health_host == "127.0.0.1"
    assert cfg.log_level == "DEBUG"
    assert cfg.base_url == "http://proxy.local"
    assert set(get_env_overrides()) == {CONFIG_ENV_OVERRIDES_BY_ENV[name] for name in values}


@pytest.mark.parametrize(
    ("key", "raw", "expected"),
    [
        ("batch_size", "7", 7),
        ("health_enabled", "no", False),
        ("retry_delays_ms", "100, 200", [100, 200]),
        ("events_topic", "team:events", "team:events"),
    ],
)
def test_parse_config_value(key: str, raw: str, expected: object) -> None:
    assert parse_config_value(key, raw) == expected


@pytest.mark.parametrize(
    ("key", "raw"),
    [
        ("batch_size", "many"),
        ("health_enabled", "maybe"),
        ("retry_delays_ms", "1,x"),
        ("retry_delays_ms", ""),
        ("no_such_key", "1"),
    ],
)
def test_parse_config_value_rejects_bad_input(key: str, raw: str) -> None:
    with pytest.raises(ConfigurationError):
        parse_config_value(key, raw)
