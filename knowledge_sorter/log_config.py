"""Logging setup for Knowledge Sorter.

loguru sinks are installed once, at import:
- stderr, filtered by a global level plus per-component overrides
- a dated file under the log directory (10 MB rotation, 7 days, zipped)
- latest.log at TRACE for the current run

Environment:
    KNOWLEDGE_SORTER_LOG_LEVEL       global level (default INFO)
    KNOWLEDGE_SORTER_LOG_DIR         log directory (default ~/.knowledge_sorter/logs)
    KNOWLEDGE_SORTER_LOG_<COMPONENT> override for router, sweep, signals, gate or paths
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

ENV_PREFIX = "KNOWLEDGE_SORTER_LOG_"
COMPONENTS = ("router", "sweep", "signals", "gate", "paths")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}"


def _level_no(level: str | None) -> int | None:
    if not level:
        return None
    try:
        return logger.level(level.upper()).no
    except ValueError:
        return None


_global_level = _level_no(os.getenv(f"{ENV_PREFIX}LEVEL", "INFO")) or 0
_overrides = {
    component: no
    for component in COMPONENTS
    if (no := _level_no(os.getenv(f"{ENV_PREFIX}{component.upper()}"))) is not None
}


def _console_filter(record) -> bool:
    name = record["extra"].get("name", "")
    for component, threshold in _overrides.items():
        if component in name:
            return record["level"].no >= threshold
    return record["level"].no >= _global_level


def log_dir() -> Path:
    return Path(os.getenv(f"{ENV_PREFIX}DIR", str(Path.home() / ".knowledge_sorter" / "logs")))


def _configure() -> None:
    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.configure(extra={"name": "knowledge_sorter"})
    logger.add(sys.stderr, level=0, filter=_console_filter, format=CONSOLE_FORMAT, colorize=True)
    logger.add(
        directory / "knowledge_sorter_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format=FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
    )
    logger.add(directory / "latest.log", level="TRACE", format=FILE_FORMAT, rotation="5 MB", retention=1)


_configure()


def get_logger(name: str):
    """Logger bound to a component name (e.g. "router", "backend.api.conflicts")."""
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Time a block and log how long it took.

    Yields a dict whose "elapsed_ms" is filled in when the block exits, so
    callers can copy the duration into their own reports.
    """
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_instance or logger, level)(f"{operation} took {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing", "log_dir"]
