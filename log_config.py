"""Loguru sinks plus a bridge for stdlib ``logging`` (requests/urllib3 log there)."""

import logging
import sys
from typing import Optional, Union

from loguru import logger

from app_paths import get_log_path

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "| <level>{level: <8}</level> "
    "| <cyan>{name}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} - {level} - {name} - {message}"


class InterceptHandler(logging.Handler):
    """Route standard logging records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _coerce_level(level: Union[str, int]) -> Union[str, int]:
    if isinstance(level, str):
        return level.strip().upper() or "INFO"
    if isinstance(level, int):
        return level
    return "INFO"


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[str] = None, console: bool = True) -> str:
    """Install console + rotating file sinks. Returns the log file path."""
    level = _coerce_level(level)
    log_path = log_file or get_log_path()

    logger.remove()
    if console:
        logger.add(
            sys.stderr,
            level=level,
            format=CONSOLE_FORMAT,
            backtrace=False,
            diagnose=False,
        )
    logger.add(
        log_path,
        level=level,
        format=FILE_FORMAT,
        rotation="5 MB",
        retention=3,
        encoding="utf-8",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.debug("Logging configured (level={}, file={})", level, log_path)
    return log_path
