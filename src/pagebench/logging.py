"""Logging for pagebench.

Every module logs through ``logging.getLogger("pagebench")``.  The CLI
calls :func:`setup_logging` once per command: the console shows INFO
(per-run progress, saved files), ``--verbose`` adds the Lighthouse and
browser command lines, and ``--quiet`` keeps only retries and errors.
A ``--log-file`` always receives everything with timestamps, which is
what you want when a batch runs unattended for hours.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOGGER_NAME = "pagebench"

_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(module)s: %(message)s"


def _console_level(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    return logging.WARNING if quiet else logging.INFO


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """(Re)configure the ``pagebench`` logger and return it.

    Handlers from a previous call are replaced, so repeated CLI
    invocations in one process do not duplicate output.  *verbose* wins
    over *quiet*.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_console_level(verbose, quiet))
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger
