"""Shared logging utilities for the lottery service.

`get_logger(name)` configures the root logger on first use from LOG_LEVEL and
LOG_FILE. `configure_logging()` lets the application re-apply level and file
from its loaded configuration once that is available.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False
_console_handler: Optional[logging.Handler] = None
_file_handler: Optional[logging.Handler] = None


def _parse_level(level: Optional[str]) -> int:
    return getattr(logging, str(level or 'INFO').upper(), logging.INFO)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Set up console + optional file logging on the root logger.

    Safe to call more than once: the console handler is added once, the file
    handler is replaced when a different path is given.
    """
    global _configured, _console_handler, _file_handler

    resolved = _parse_level(level or os.getenv('LOG_LEVEL'))
    log_file = log_file or os.getenv('LOG_FILE', '')
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(resolved)

    if not _configured:
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        root.addHandler(ch)
        _console_handler = ch
        _configured = True

    for handler in (_console_handler, _file_handler):
        if handler is not None:
            handler.setLevel(resolved)

    if not log_file:
        return
    log_path = Path(log_file)
    if _file_handler is not None and getattr(_file_handler, 'baseFilename', None) == str(log_path.resolve()):
        return
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path, encoding='utf-8')
    except OSError:
        root.exception('Failed to create file log handler for %s; continuing with console only', log_path)
        return
    fh.setLevel(resolved)
    fh.setFormatter(formatter)
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
    root.addHandler(fh)
    _file_handler = fh


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger, configuring the root logger on first call."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
