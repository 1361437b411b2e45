"""Shared utilities for leadsync CLI commands.

Holds the global option state set by the app callback, config loading,
the client/manager factories commands use, and the live job watcher.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import typer
from pydantic import ValidationError

from leadsync.api.client import ScraperClient
from leadsync.core.config import ClientConfig
from leadsync.core.logging import configure_logging, get_logger
from leadsync.jobs.manager import JobsManager
from leadsync.jobs.registry import JobRecord, RegistryChange

from .output import console, format_job_line

_logger = get_logger("cli")


# =============================================================================
# Global option state
# =============================================================================


@dataclass
class _CliState:
    config_path: Path | None = None
    log_level: str | None = None
    log_format: str | None = None
    log_file: Path | None = None
    config: ClientConfig | None = None


_state = _CliState()


def set_cli_options(
    config_path: Path | None,
    log_level: str | None,
    log_format: str | None,
    log_file: Path | None,
) -> None:
    _state.config_path = config_path
    _state.log_level = log_level
    _state.log_format = log_format
    _state.log_file = log_file
    _state.config = None


def reset_cli_state() -> None:
    """Forget global options and cached config (primarily for testing)."""
    set_cli_options(None, None, None, None)


def get_config() -> ClientConfig:
    """Load the client config once per invocation.

    Raises:
        typer.Exit: the config file is missing or invalid.
    """
    if _state.config is not None:
        return _state.config
    try:
        config = ClientConfig.load(_state.config_path)
    except (OSError, ValidationError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None

    overrides: dict[str, object] = {}
    if _state.log_level:
        overrides["level"] = _state.log_level.upper()
    if _state.log_format:
        overrides["format"] = _state.log_format
    if _state.log_file:
        overrides["file"] = _state.log_file
    if overrides:
        try:
            logging_config = config.logging.model_validate(
                {**config.logging.model_dump(), **overrides}
            )
        except ValidationError as e:
            console.print(f"[red]Logging configuration error:[/red] {e}")
            raise typer.Exit(1) from None
        config = config.model_copy(update={"logging": logging_config})

    _state.config = config
    return config


def configure_global_logging() -> None:
    """Configure logging from config plus CLI options."""
    log = get_config().logging
    configure_logging(level=log.level, format=log.format, file_path=log.file)


# =============================================================================
# Factories (patched in tests to inject a fake backend)
# =============================================================================


def create_client(config: ClientConfig) -> ScraperClient:
    return ScraperClient.from_config(config)


def create_manager(config: ClientConfig) -> JobsManager:
    return JobsManager.from_config(config)


# =============================================================================
# Live job watching
# =============================================================================


async def watch_job(manager: JobsManager, job_id: str) -> JobRecord | None:
    """Show a live status line until ``job_id`` is terminal.

    Returns the terminal record, or None if the job disappeared from the
    registry.
    """
    changed = asyncio.Event()

    def _on_change(change: RegistryChange) -> None:
        if change.job_id == job_id:
            changed.set()

    sub_id = manager.registry.subscribe(_on_change)
    try:
        with console.status("Starting...") as status:
            while True:
                changed.clear()
                record = manager.get(job_id)
                if record is None:
                    _logger.warning("cli.watched_job_missing", job_id=job_id)
                    return None
                if record.is_terminal:
                    return record
                status.update(format_job_line(record))
                await changed.wait()
    finally:
        manager.registry.unsubscribe(sub_id)
