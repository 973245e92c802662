"""Loguru configuration helpers for consistent structured logging."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from barsim import __version__
from barsim.settings import LoggingSettings, get_logging_settings

PathLikeArg = Union[str, PathLike]

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "run={extra[run_id]} | job={extra[job_id]} | env={extra[environment]} | "
    "ver={extra[service_version]} | {message}"
)

_ctx_run_id: ContextVar[str] = ContextVar("log_run_id", default="-")
_ctx_job_id: ContextVar[str] = ContextVar("log_job_id", default="-")
_ctx_environment: ContextVar[str] = ContextVar("log_environment", default="local")
_ctx_service_version: ContextVar[str] = ContextVar("log_service_version", default=__version__)

_CONTEXT_VARS: Dict[str, ContextVar[str]] = {
    "run_id": _ctx_run_id,
    "job_id": _ctx_job_id,
    "environment": _ctx_environment,
    "service_version": _ctx_service_version,
}


def _inject_context(record: Dict[str, Any]) -> Dict[str, Any]:
    extra = record["extra"]
    for key, ctx in _CONTEXT_VARS.items():
        if extra.get(key) in (None, "-"):
            extra[key] = ctx.get()
    return record


def _std_logging_sink(message) -> None:
    record = message.record
    exc = record["exception"]
    exc_info = (exc.type, exc.value, exc.traceback) if exc else None

    log_record = logging.LogRecord(
        name=record["name"],
        level=record["level"].no,
        pathname=record["file"].path,
        lineno=record["line"],
        msg=record["message"],
        args=(),
        exc_info=exc_info,
        func=record["function"],
    )
    for k, v in record["extra"].items():
        setattr(log_record, k, v)

    logging.getLogger().handle(log_record)


def _add_file_sink(target: Path, level: str, filename: str = "barsim.log") -> Path:
    if target.exists() and target.is_dir():
        target = target / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    logger.add(str(target), level=level, format=_LOG_FORMAT, backtrace=False, diagnose=False)
    return target


def setup_logging(
    *,
    force: bool = False,
    level: str | None = None,
    settings: LoggingSettings | None = None,
) -> None:
    """
    Install the stdout sink and the stdlib bridge, once per process.

    Level, environment label and optional log file come from
    :class:`LoggingSettings` (``LOG_LEVEL``, ``ENV``, ``LOG_FILE``); an
    explicit ``level`` wins over the environment.
    """
    if not force and getattr(setup_logging, "_configured", False):
        return

    cfg = settings or get_logging_settings()
    log_level = (level or cfg.level).upper()

    logger.remove()
    logger.configure(
        extra={
            "service_version": __version__,
            "environment": cfg.environment,
            "run_id": "-",
            "job_id": "-",
        },
        patcher=_inject_context,
    )
    _ctx_environment.set(cfg.environment)

    logger.add(sys.stdout, level=log_level, format=_LOG_FORMAT, backtrace=False, diagnose=False)
    logger.add(_std_logging_sink, level=log_level, backtrace=False, diagnose=False)
    if cfg.file is not None:
        _add_file_sink(Path(cfg.file), log_level)

    std_level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(std_level)
    if not root_logger.handlers:
        root_logger.addHandler(logging.NullHandler())
    setup_logging._configured = True  # type: ignore[attr-defined]


def setup_test_logging(
    arg: Optional[Union[str, PathLikeArg]] = None,
    *,
    level: Optional[str] = None,
    file: Optional[PathLikeArg] = None,
    filename: str = "pytest.log",
) -> None:
    """
    Lightweight logging setup for tests.

    Accepts either a positional path (file or directory) to write logs to, or
    a level name. If a directory is given, logs go to ``<dir>/<filename>``.
    """
    inferred_level: Optional[str] = None
    inferred_path: Optional[Path] = None
    if arg is not None:
        if hasattr(arg, "__fspath__"):
            inferred_path = Path(arg)  # type: ignore[arg-type]
        elif isinstance(arg, str) and ("/" in arg or arg.endswith(".log")):
            inferred_path = Path(arg)
        elif isinstance(arg, str):
            inferred_level = arg

    effective_level = (level or inferred_level or os.getenv("PYTEST_LOGLEVEL") or "INFO").upper()
    setup_logging(force=True, level=effective_level)

    target = Path(file) if file is not None else inferred_path
    if target is not None:
        _add_file_sink(target, effective_level, filename)


@contextmanager
def logging_context(**values: str):
    """Context manager to set structured logging fields (e.g. run_id, job_id)."""
    tokens = []
    for key, value in values.items():
        ctx = _CONTEXT_VARS.get(key)
        if ctx is not None:
            tokens.append((ctx, ctx.set(value or "-")))
    try:
        with logger.contextualize(**values):
            yield
    finally:
        for ctx, token in reversed(tokens):
            ctx.reset(token)


__all__ = ["setup_logging", "setup_test_logging", "logging_context"]
