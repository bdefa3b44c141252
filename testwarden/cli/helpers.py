"""Shared CLI helper utilities.

- console: Shared Rich Console instance
- run_async: Run a coroutine from a sync typer command
- open_database: Initialized Database for the configured path
- configure_logging: basicConfig at the configured level
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, TypeVar

from rich.console import Console

from testwarden.core.config import GlobalConfig, get_global_config
from testwarden.core.models import Severity
from testwarden.persistence.database import Database

T = TypeVar("T")

# Shared console instance for all CLI modules
console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine from sync context."""
    return asyncio.run(coro)


def configure_logging(config: Optional[GlobalConfig] = None) -> None:
    config = config or get_global_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def open_database(config: Optional[GlobalConfig] = None) -> Database:
    """Open the configured database with the schema in place (sync connection only)."""
    config = config or get_global_config()
    db = Database(config.database_path)
    db.initialize()
    return db


def severity_text(severity: Severity) -> str:
    style = SEVERITY_STYLES.get(severity, "white")
    return f"[{style}]{severity.value}[/{style}]"
