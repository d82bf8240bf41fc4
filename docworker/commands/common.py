from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer
from rich import print

from docworker.config import DocWorkerConfig, load_config
from docworker.errors import ConfigurationError
from docworker.logging_setup import configure_logging
from docworker.store import SessionStore


def load_config_or_exit(
    *,
    config_path: str | None = None,
    db_path: str | None = None,
    log_level: str | None = None,
) -> DocWorkerConfig:
    try:
        cfg = load_config(Path(config_path) if config_path else None)
    except ConfigurationError as exc:
        print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if db_path:
        cfg.db_path = db_path
    if log_level:
        cfg.log_level = log_level
    configure_logging(cfg.log_level, cfg.log_file)
    return cfg


def store_from_config(cfg: DocWorkerConfig) -> SessionStore:
    return SessionStore(cfg.db_path)


def exit_with_error(message: str, exc: BaseException | None = None) -> NoReturn:
    print(f"[red]{message}[/red]")
    if exc is not None:
        raise typer.Exit(code=1) from exc
    raise typer.Exit(code=1)
