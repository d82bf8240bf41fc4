from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("~/.config/docworker/config.json").expanduser()
DEFAULT_DB_PATH = Path.home() / ".docworker" / "docworker.sqlite"

DEFAULT_BASIC_MODEL = "claude-3-5-haiku-20241022"
DEFAULT_PREMIUM_MODEL = "claude-3-5-sonnet-20241022"

CONFIG_ENV_OVERRIDES = {
    "db_path": "DOCWORKER_DB",
    "bus_backend": "DOCWORKER_BUS",
    "redis_url": "REDIS_URL",
    "events_topic": "DOCWORKER_EVENTS_TOPIC",
    "provider": "DOCWORKER_PROVIDER",
    "base_url": "DOCWORKER_BASE_URL",
    "basic_model": "DOCWORKER_BASIC_MODEL",
    "premium_model": "DOCWORKER_PREMIUM_MODEL",
    "generation_timeout_s": "DOCWORKER_GENERATION_TIMEOUT_S",
    "idle_timeout_minutes": "DOCWORKER_IDLE_TIMEOUT_MINUTES",
    "scan_interval_s": "DOCWORKER_SCAN_INTERVAL_S",
    "batch_size": "DOCWORKER_BATCH_SIZE",
    "batch_window_seconds": "DOCWORKER_BATCH_WINDOW_SECONDS",
    "max_retries": "DOCWORKER_MAX_RETRIES",
    "retry_delays_ms": "DOCWORKER_RETRY_DELAYS_MS",
    "retry_poll_interval_s": "DOCWORKER_RETRY_POLL_INTERVAL_S",
    "small_session_threshold": "DOCWORKER_SMALL_SESSION_THRESHOLD",
    "stage_size": "DOCWORKER_STAGE_SIZE",
    "worker_threads": "DOCWORKER_WORKER_THREADS",
    "health_enabled": "DOCWORKER_HEALTH",
    "health_host": "DOCWORKER_HEALTH_HOST",
    "health_port": "DOCWORKER_HEALTH_PORT",
    "log_level": "DOCWORKER_LOG_LEVEL",
    "log_file": "DOCWORKER_LOG_FILE",
}

_INT_KEYS = {
    "generation_timeout_s",
    "idle_timeout_minutes",
    "scan_interval_s",
    "batch_size",
    "batch_window_seconds",
    "max_retries",
    "retry_poll_interval_s",
    "small_session_threshold",
    "stage_size",
    "batch_max_tokens",
    "single_max_tokens",
    "stage_max_tokens",
    "synthesis_max_tokens",
    "worker_threads",
    "health_port",
}
_BOOL_KEYS = {"health_enabled"}
_SECRET_KEYS = {"api_key"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "off", "no"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("DOCWORKER_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("invalid config json", {"path": str(config_path)}) from exc
    if not isinstance(data, dict):
        raise ConfigurationError("config must be an object", {"path": str(config_path)})
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class DocWorkerConfig:
    db_path: str = str(DEFAULT_DB_PATH)

    # Event bus
    bus_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    events_topic: str = "devpattern:events"

    # Generation service
    provider: str = "anthropic"
    api_key: str | None = None
    base_url: str | None = None
    basic_model: str = DEFAULT_BASIC_MODEL
    premium_model: str = DEFAULT_PREMIUM_MODEL
    generation_timeout_s: int = 120
    batch_max_tokens: int = 4000
    single_max_tokens: int = 2000
    stage_max_tokens: int = 500
    synthesis_max_tokens: int = 3000

    # Pipeline
    idle_timeout_minutes: int = 10
    scan_interval_s: int = 60
    batch_size: int = 5
    batch_window_seconds: int = 30
    max_retries: int = 3
    retry_delays_ms: list[int] = field(default_factory=lambda: [5000, 30000, 120000])
    retry_poll_interval_s: int = 5
    small_session_threshold: int = 20
    stage_size: int = 20
    worker_threads: int = 4

    # Operational surface
    health_enabled: bool = True
    health_host: str = "0.0.0.0"
    health_port: int = 3002
    log_level: str = "INFO"
    log_file: str | None = None

    def model_for_tier(self, tier: str | None) -> str:
        if tier == "premium":
            return self.premium_model
        return self.basic_model

    def retry_delay_ms(self, retry_count: int) -> int:
        """Backoff for the given (1-based) retry, clamped to the last table entry."""

        if not self.retry_delays_ms:
            return 0
        index = min(max(retry_count, 1), len(self.retry_delays_ms)) - 1
        return self.retry_delays_ms[index]

    def to_public_dict(self) -> dict[str, Any]:
        return redact_secrets(asdict(self))


CONFIG_KEYS = frozenset(f.name for f in fields(DocWorkerConfig))


def redact_secrets(data: dict[str, Any]) -> dict[str, Any]:
    return {key: "***" if key in _SECRET_KEYS and value else value for key, value in data.items()}


def parse_config_value(key: str, raw: str) -> Any:
    """Parse a command-line string into the JSON value stored for ``key``.

    Unlike file and env loading, which warn and keep the default, bad input
    raises ``ConfigurationError`` here so nothing invalid is written.
    """

    if key not in CONFIG_KEYS:
        raise ConfigurationError("unknown config key", {"key": key})
    if key in _INT_KEYS:
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigurationError("expected an integer", {"key": key, "value": raw}) from exc
    if key in _BOOL_KEYS:
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigurationError("expected a boolean", {"key": key, "value": raw})
    if key == "retry_delays_ms":
        try:
            delays = [int(part) for part in raw.split(",") if part.strip()]
        except ValueError as exc:
            raise ConfigurationError("expected comma-separated integers", {"key": key}) from exc
        if not delays:
            raise ConfigurationError("retry_delays_ms must not be empty")
        return delays
    return raw


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in _TRUE_VALUES:
        return True
    if value.lower() in _FALSE_VALUES:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_int_list(value: object, *, key: str) -> list[int] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = [p for p in value.split(",") if p.strip()]
    if isinstance(value, list):
        items: list[int] = []
        for item in value:
            try:
                items.append(int(item))
            except (TypeError, ValueError):
                warnings.warn(f"Invalid int in {key}: {item!r}", RuntimeWarning, stacklevel=2)
                return None
        return items
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def load_config(path: Path | None = None) -> DocWorkerConfig:
    cfg = _apply_dict(DocWorkerConfig(), read_config_file(path))
    cfg = _apply_env(cfg)
    validate_config(cfg)
    return cfg


def validate_config(cfg: DocWorkerConfig) -> None:
    if cfg.batch_size < 1:
        raise ConfigurationError("batch_size must be at least 1", {"batch_size": cfg.batch_size})
    if cfg.stage_size < 1:
        raise ConfigurationError("stage_size must be at least 1", {"stage_size": cfg.stage_size})
    if cfg.max_retries < 0:
        raise ConfigurationError("max_retries must not be negative")
    if cfg.bus_backend not in {"memory", "redis"}:
        raise ConfigurationError("unknown bus backend", {"bus_backend": cfg.bus_backend})
    if cfg.provider not in {"anthropic", "openai"}:
        raise ConfigurationError("unknown generation provider", {"provider": cfg.provider})


def _apply_dict(cfg: DocWorkerConfig, data: dict[str, Any]) -> DocWorkerConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key == "retry_delays_ms":
            parsed = _coerce_int_list(value, key=key)
            if parsed:
                cfg.retry_delays_ms = parsed
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: DocWorkerConfig) -> DocWorkerConfig:
    cfg = _apply_dict(cfg, get_env_overrides())
    api_key = os.getenv("DOCWORKER_API_KEY")
    if not api_key:
        if cfg.provider == "openai":
            api_key = os.getenv("OPENAI_API_KEY")
        else:
            api_key = os.getenv("ANTHROPIC_API_KEY")
    cfg.api_key = api_key or cfg.api_key
    return cfg


def build_config(data: dict[str, Any]) -> DocWorkerConfig:
    """Config from file-shaped data alone, without env; raises if invalid."""

    cfg = _apply_dict(DocWorkerConfig(), data)
    validate_config(cfg)
    return cfg
