"""Operational logging for build invocations."""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def close_operational_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def setup_operational_logger(log_dir: str | None, build_id: str) -> tuple[logging.Logger, str | None]:
    """
    Return the per-build logger `agent_bundle.<build_id>`.

    INFO and above go to stderr. When `log_dir` is set, everything from DEBUG
    up is also written to `<log_dir>/<build_id>_build.log` (UTF-8). Calling this
    again for the same build id replaces the previous handlers.
    """

    logger = logging.getLogger(f"agent_bundle.{build_id}")
    close_operational_logger(logger)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    log_file: str | None = None
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = str(directory / f"{build_id}_build.log")
        logger.addHandler(_handler(logging.FileHandler(log_file, encoding="utf-8"), logging.DEBUG))
    logger.addHandler(_handler(logging.StreamHandler(), logging.INFO))

    logger.info("Operational logging initialized for build %s", build_id)
    if log_file:
        logger.debug("Operational log file: %s", log_file)
    return logger, log_file
