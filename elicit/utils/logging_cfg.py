from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

from elicit.utils.env_cfg import load_logging_env


class _StdlibBridge(logging.Handler):
    """
    Forwards records from stdlib loggers (uvicorn, httpx, openai) into loguru.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    *,
    encoding: str = "utf-8",
    backtrace: bool = False,
    diagnose: bool = False,
    bridge_stdlib: bool = True,
) -> Path:
    """
    Set up logging for the application.

    Console level, rotation and retention come from the environment
    (see ``load_logging_env``); the file sink always records DEBUG.

    Args:
        encoding (str, optional): The log file encoding. Defaults to "utf-8".
        backtrace (bool, optional): Whether to include backtrace information on the console. Defaults to False.
        diagnose (bool, optional): Whether to include diagnostic information. Defaults to False.
        bridge_stdlib (bool, optional): Whether to route stdlib logging into loguru. Defaults to True.

    Returns:
        Path: The path to the log file.
    """
    cfg = load_logging_env()
    log_path = cfg.path
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()

    logger.add(
        sink=sys.stderr,
        level=cfg.level,
        backtrace=backtrace,
        diagnose=diagnose,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name} | {message}",
    )

    logger.add(
        sink=log_path,
        rotation=cfg.rotation,
        retention=cfg.retention,
        encoding=encoding,
        level="DEBUG",
        backtrace=True,
        diagnose=diagnose,
        enqueue=True,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {line:<4} | {name} | {message}",
    )

    if bridge_stdlib:
        logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)

    return log_path
