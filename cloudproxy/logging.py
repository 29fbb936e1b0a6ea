"""Console and file logging via loguru.

Records bound with ``instance``/``index`` render with the droplet prefix::

    12:00:01 | WARNING  | cloud-proxy-AbCdEfGh (03): Droplet not ready yet

Loguru serialises each record under a handler lock, so lines from
concurrent workers never interleave.

Example:
    from cloudproxy.logging import LogConfig, setup_logging

    setup_logging(LogConfig(level="DEBUG", file="cloud-proxy.log"))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

    from cloudproxy.instance import Instance

LogLevel: TypeAlias = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"]


def _format_context(record: Any) -> str:
    extra = record.get("extra", {})
    if "instance" not in extra:
        return ""
    return f"{extra['instance']} ({extra.get('index', '?')}): "


CONSOLE_FORMAT = (
    "<green>{time:YYYY/MM/DD HH:mm:ss}</green> "
    "<level>{extra[_ctx]}{message}</level>"
)

DEBUG_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{extra[_ctx]}{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {extra[_ctx]}{message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console level.
        file: Optional log file; always records DEBUG and up.
        colorize: Colour console output. None lets loguru decide.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    colorize: bool | None = None


def setup_logging(config: LogConfig = LogConfig()) -> list[int]:
    """Replace loguru's default handler; return the new handler ids."""
    logger.remove()
    logger.configure(patcher=lambda r: r["extra"].update(_ctx=_format_context(r)))

    handler_ids = [
        logger.add(
            sys.stderr,
            level=config.level,
            format=DEBUG_CONSOLE_FORMAT if config.level in ("TRACE", "DEBUG") else CONSOLE_FORMAT,
            colorize=config.colorize,
            backtrace=False,
            diagnose=False,
        )
    ]

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                diagnose=False,
                enqueue=False,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)


def instance_logger(instance: Instance) -> Logger:
    """Logger whose lines carry the droplet's name and index."""
    return logger.bind(instance=instance.name, index=instance.label or str(instance.index))


__all__ = [
    "LogConfig",
    "LogLevel",
    "instance_logger",
    "setup_logging",
    "teardown_logging",
]
