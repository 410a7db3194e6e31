# ousterlab/utils.py
from __future__ import annotations

import atexit
import logging
import os
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

__all__ = ["setup", "log", "ensure_dir"]

# ---- internal globals ----
_log_name = "ousterlab"
_LOG_FILE = "ousterlab.log"
log = logging.getLogger(_log_name)
log.addHandler(logging.NullHandler())
log.setLevel(logging.INFO)
log.propagate = False

_q: Optional[queue.SimpleQueue] = None
_listener: Optional[QueueListener] = None
_configured = False


def ensure_dir(p: Path):
    p.mkdir(parents=True, exist_ok=True)


def setup(
    log_dir: Optional[Union[str, os.PathLike]] = None,
    level: Union[int, str] = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Configure async logging. Call once at program start (e.g., in main).
    - log_dir=None logs to the console only; a directory adds ousterlab.log,
      rotated at midnight with 7 backups.
    - level accepts "DEBUG"/"INFO"/"WARNING"/"ERROR" or a logging int.
    """
    global _q, _listener, _configured

    if _configured:
        return log

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    log.setLevel(level)

    fmt = "[%(asctime)s] %(levelname).1s %(process)d %(threadName)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    handlers = []
    if console:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(formatter)
        h.setLevel(level)
        handlers.append(h)

    if log_dir is not None:
        log_path = Path(log_dir)
        ensure_dir(log_path)
        file_handler = TimedRotatingFileHandler(
            filename=str(log_path / _LOG_FILE),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
            utc=False,
            delay=True,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        handlers.append(file_handler)

    # handler on the logger only enqueues; formatting and I/O happen in the listener thread
    _q = queue.SimpleQueue()
    qh = QueueHandler(_q)
    qh.setLevel(level)

    _clear_handlers(log)
    log.addHandler(qh)

    _listener = QueueListener(_q, *handlers, respect_handler_level=True)
    _listener.start()
    atexit.register(_shutdown_listener)

    _configured = True
    return log


def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def _shutdown_listener() -> None:
    global _listener
    if _listener:
        _listener.stop()
        _listener = None

