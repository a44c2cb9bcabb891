"""Logging configuration using loguru.

Intercepts stdlib logging so that uvicorn, httpx, sqlalchemy and the
execution package all flow through loguru with a unified format.
Workspace-scoped records carry ``workspace_id`` via ``logger.bind``.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "{extra[workspace_prefix]}<level>{message}</level>"
)


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk the call stack so loguru reports the real call-site
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _add_workspace_prefix(record: dict) -> None:
    workspace_id = record["extra"].get("workspace_id")
    record["extra"]["workspace_prefix"] = f"[{workspace_id}] " if workspace_id else ""


def setup_logging(level: str = "INFO", *, json: bool = False) -> None:
    """Configure loguru as the sole logging sink.

    Call this once at process startup (before uvicorn starts).  With
    ``json=True`` records are serialized one per line for log shippers.
    """
    level = level.upper()

    logger.remove()
    logger.configure(patcher=_add_workspace_prefix)
    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_TEXT_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for name in ("uvicorn.access", "httpx", "httpcore", "sse_starlette"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging initialised (level={}, json={})", level, json)
