"""structlog setup driven by the CLI verbosity flags."""

import logging
import sys

import structlog

from binfetch.core.config import Verbosity


_LEVELS = {
    Verbosity.VERBOSE: logging.DEBUG,
    Verbosity.NORMAL: logging.WARNING,
    Verbosity.SILENT: logging.ERROR,
    Verbosity.EXTRA_SILENT: logging.CRITICAL,
}


def configure_logging(verbosity: Verbosity = Verbosity.NORMAL) -> None:
    """Route core diagnostics to stderr at the level matching ``verbosity``."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS[verbosity]),
        # sys.stderr is read per logger, not at configure time
        logger_factory=lambda *args: structlog.PrintLogger(sys.stderr),
        cache_logger_on_first_use=False,
    )
