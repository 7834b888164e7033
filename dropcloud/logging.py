"""Logging configuration for dropcloud.

dropcloud logs through loguru and stays silent until an application (or
the ``dropcloud`` CLI) opts in. Every module logs with a bound
``component``; bootstrap transcripts are additionally bound to the worker
they belong to, so they can be split into their own file:

    from dropcloud.logging import LogConfig, setup_logging, teardown_logging

    handlers = setup_logging(LogConfig(level="DEBUG", bootstrap_file="bootstrap.log"))
    try:
        cloud.provision("linux", 2)
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

logger.disable("dropcloud")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

BOOTSTRAP_COMPONENT = "bootstrap"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {message}"

BOOTSTRAP_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {extra[worker]} | {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum level for the console.
        file: Log file receiving every dropcloud record at DEBUG.
        bootstrap_file: Log file receiving only bootstrap transcripts.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g. "50 MB", "1 day").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    bootstrap_file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _is_bootstrap(record: dict[str, Any]) -> bool:
    return record["extra"].get("component") == BOOTSTRAP_COMPONENT


def bootstrap_sink(worker: str) -> Callable[[str], None]:
    """Line sink recording the bootstrap transcript of ``worker``."""
    bound = logger.bind(component=BOOTSTRAP_COMPONENT, worker=worker)

    def write(line: str) -> None:
        bound.info(line)

    return write


def setup_logging(config: LogConfig) -> list[int]:
    """Enable dropcloud logging and return the handler ids added."""
    logger.enable("dropcloud")
    logger.configure(extra={"component": "dropcloud"})
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=CONSOLE_FORMAT,
                colorize=True,
                filter="dropcloud",
            )
        )

    file_options = dict(
        rotation=config.rotation,
        retention=config.retention,
        compression="zip",
        diagnose=False,  # tracebacks would include API tokens
        enqueue=True,
    )

    if config.file:
        handler_ids.append(
            logger.add(config.file, level="DEBUG", format=FILE_FORMAT, filter="dropcloud", **file_options)
        )

    if config.bootstrap_file:
        handler_ids.append(
            logger.add(
                config.bootstrap_file,
                level="INFO",
                format=BOOTSTRAP_FORMAT,
                filter=_is_bootstrap,
                **file_options,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("dropcloud")


__all__ = ["LogConfig", "LogLevel", "bootstrap_sink", "setup_logging", "teardown_logging"]
