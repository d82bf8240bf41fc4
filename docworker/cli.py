from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import load_config_or_exit
from .commands.config_cmds import config_set_cmd, config_show_cmd, config_unset_cmd
from .commands.queue_cmds import dead_letters_list_cmd, dead_letters_replay_cmd, retry_queue_cmd
from .commands.worker_cmds import (
    generate_cmd,
    init_db_cmd,
    publish_cmd,
    run_cmd,
    scan_once_cmd,
    status_cmd,
)
from .models import EVENT_FINALIZED

app = typer.Typer(help="docworker: generate documentation for finalized work sessions")
dead_letters_app = typer.Typer(help="Inspect and replay dead-lettered events")
config_app = typer.Typer(help="Configuration")
app.add_typer(dead_letters_app, name="dead-letters")
app.add_typer(config_app, name="config")

ConfigOpt = typer.Option(None, "--config", help="Path to config JSON")
DbOpt = typer.Option(None, "--db-path", help="Path to SQLite database")


@app.command()
def run(
    config: str = ConfigOpt,
    db_path: str = DbOpt,
    log_level: str = typer.Option(None, help="Log level (DEBUG, INFO, WARNING, ERROR)"),
) -> None:
    """Run the worker: consume events, retry, scan idle sessions, serve health."""
    cfg = load_config_or_exit(config_path=config, db_path=db_path, log_level=log_level)
    run_cmd(cfg)


@app.command()
def status(
    host: str = typer.Option("127.0.0.1", help="Worker health host"),
    port: int = typer.Option(None, help="Worker health port (defaults to config)"),
    timeout: float = typer.Option(3.0, help="Request timeout in seconds"),
    config: str = ConfigOpt,
) -> None:
    """Query a running worker's health endpoint."""
    if port is None:
        port = load_config_or_exit(config_path=config).health_port
    status_cmd(host=host, port=port, timeout=timeout)


@app.command("scan-once")
def scan_once(config: str = ConfigOpt, db_path: str = DbOpt) -> None:
    """Finalize idle sessions once and publish their timeout events."""
    scan_once_cmd(load_config_or_exit(config_path=config, db_path=db_path))


@app.command()
def generate(
    session_id: str,
    tier: str = typer.Option(None, help="basic or premium (defaults to the session tier)"),
    config: str = ConfigOpt,
    db_path: str = DbOpt,
) -> None:
    """Generate documentation for one session now."""
    cfg = load_config_or_exit(config_path=config, db_path=db_path)
    generate_cmd(cfg, session_id=session_id, tier=tier)


@app.command()
def publish(
    session_id: str,
    event_type: str = typer.Option(EVENT_FINALIZED, "--type", help="Finalization event type"),
    tier: str = typer.Option(None, help="basic or premium"),
    config: str = ConfigOpt,
) -> None:
    """Publish a finalization event for a session."""
    cfg = load_config_or_exit(config_path=config)
    publish_cmd(cfg, session_id=session_id, event_type=event_type, tier=tier)


@app.command("init-db")
def init_db(config: str = ConfigOpt, db_path: str = DbOpt) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(load_config_or_exit(config_path=config, db_path=db_path))


@app.command("retry-queue")
def retry_queue(
    limit: int = typer.Option(25, help="Max entries"),
    config: str = ConfigOpt,
    db_path: str = DbOpt,
) -> None:
    """Show queued retries."""
    retry_queue_cmd(load_config_or_exit(config_path=config, db_path=db_path), limit=limit)


@dead_letters_app.command("list")
def dead_letters_list(
    limit: int = typer.Option(25, help="Max entries"),
    config: str = ConfigOpt,
    db_path: str = DbOpt,
) -> None:
    """List dead-lettered events."""
    dead_letters_list_cmd(load_config_or_exit(config_path=config, db_path=db_path), limit=limit)


@dead_letters_app.command("replay")
def dead_letters_replay(
    entry_id: int,
    config: str = ConfigOpt,
    db_path: str = DbOpt,
) -> None:
    """Republish a dead-lettered event with a fresh retry budget."""
    cfg = load_config_or_exit(config_path=config, db_path=db_path)
    dead_letters_replay_cmd(cfg, entry_id=entry_id)


@config_app.command("show")
def config_show(config: str = ConfigOpt) -> None:
    """Print the config file, env overrides and effective values (secrets redacted)."""
    config_show_cmd(load_config_or_exit(config_path=config), config_path=config)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key, e.g. batch_size"),
    value: str = typer.Argument(..., help="New value (lists are comma-separated)"),
    config: str = ConfigOpt,
) -> None:
    """Write one value to the config file."""
    config_set_cmd(key=key, value=value, config_path=config)


@config_app.command("unset")
def config_unset(
    key: str = typer.Argument(..., help="Config key to remove from the file"),
    config: str = ConfigOpt,
) -> None:
    """Remove one value from the config file, restoring its default."""
    config_unset_cmd(key=key, config_path=config)


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
