"""Structured logging setup: JSON lines to a rotating file, readable console output."""

from __future__ import annotations

import logging
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(
    log_dir: str,
    command: str | None = None,
    *,
    verbose: bool = False,
    log_name: str = "typecho-migrator",
) -> structlog.stdlib.BoundLogger:
    """Configure structlog for one CLI run.

    Every event carries a short ``run_id`` (and the command name, when given)
    so interleaved runs can be told apart in the shared log file.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # 10 MB per file, keep 5 backups
    file_handler = RotatingFileHandler(
        log_path / f"{log_name}.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=structlog.processors.JSONRenderer()))

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stdout_handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=structlog.dev.ConsoleRenderer(colors=False)))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # Repeated calls (tests, nested commands) must not stack handlers
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(stdout_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    context = {"run_id": uuid.uuid4().hex[:8]}
    if command:
        context["command"] = command
    structlog.contextvars.bind_contextvars(**context)

    return structlog.get_logger(log_name)
