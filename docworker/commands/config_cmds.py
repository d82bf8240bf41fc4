from __future__ import annotations

import json
from pathlib import Path

from rich import print

from docworker.commands.common import exit_with_error
from docworker.config import (
    DocWorkerConfig,
    build_config,
    get_config_path,
    get_env_overrides,
    parse_config_value,
    read_config_file,
    redact_secrets,
    write_config_file,
)
from docworker.errors import ConfigurationError


def config_show_cmd(cfg: DocWorkerConfig, *, config_path: str | None) -> None:
    path = get_config_path(Path(config_path) if config_path else None)
    payload = {
        "path": str(path),
        "file": redact_secrets(read_config_file(path)),
        "envOverrides": get_env_overrides(),
        "effective": cfg.to_public_dict(),
    }
    print(json.dumps(payload, indent=2))


def config_set_cmd(*, key: str, value: str, config_path: str | None) -> None:
    """Validate one value and persist it to the config file."""

    path = get_config_path(Path(config_path) if config_path else None)
    try:
        data = read_config_file(path)
        data[key] = parse_config_value(key, value)
        build_config(data)
    except ConfigurationError as exc:
        exit_with_error(f"Cannot set {key}: {exc}", exc)
    write_config_file(data, path)
    shown = redact_secrets({key: data[key]})[key]
    print(f"Set {key} = {json.dumps(shown)} in {path}")
    if key in get_env_overrides():
        print(f"[yellow]Note: {key} is overridden by the environment[/yellow]")


def config_unset_cmd(*, key: str, config_path: str | None) -> None:
    path = get_config_path(Path(config_path) if config_path else None)
    try:
        data = read_config_file(path)
    except ConfigurationError as exc:
        exit_with_error(f"Cannot read {path}: {exc}", exc)
    if key not in data:
        print(f"{key} is not set in {path}")
        return
    data.pop(key)
    write_config_file(data, path)
    print(f"Removed {key} from {path}")
