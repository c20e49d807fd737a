"""Logging setup for the command-line front end.

The core only ever calls ``logging.getLogger(__name__)``; handlers and levels
are installed here, once, by the CLI.
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

# Between INFO and DEBUG: per-object progress that is too chatty by default.
VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_FORMAT = "%(message)s"
FILE_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(quiet: bool = False, verbose: bool = False, debug: bool = False) -> int:
    """Map the mutually exclusive verbosity flags to a logging level."""
    if quiet:
        return logging.WARNING
    if debug:
        return logging.DEBUG
    if verbose:
        return VERBOSE
    return logging.INFO


def setup_logging(
    level: int = logging.INFO,
    log_file: str | Path | None = None,
    console: Console | None = None,
) -> None:
    """Install a rich console handler (and optionally a plain file handler).

    Args:
        level: Root level for the ``db_snapshot`` logger tree.
        log_file: Optional path that also receives every record.
        console: Console to render to (stderr by default).
    """
    handlers: list[logging.Handler] = [
        RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    ]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    logging.getLogger("db_snapshot").setLevel(level)
