"""Shared rich console and logging setup for command-line runs."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

import config

console = Console()


def setup_logging(level: Optional[str] = None) -> None:
    """Route ``logging`` through rich so log lines and progress share one console."""
    name = (level or config.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # urllib3 retry chatter drowns out the per-page lines
    logging.getLogger("urllib3").setLevel(logging.WARNING)
