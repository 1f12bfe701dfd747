#!/usr/bin/env python3
"""Logging configuration for shadowpoint."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = 'shadowpoint'
DEBUG_ENV = 'CHECKPOINT_DEBUG'


def is_debug_mode() -> bool:
    """Check if debug logging was requested through the environment."""
    return os.environ.get(DEBUG_ENV, '').lower() in ('1', 'true', 'yes')


def setup_logging(debug: Optional[bool] = None,
                  log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach handlers to the package logger.

    Called once per process by the entry point. Calling it again replaces
    the handlers rather than stacking duplicates.
    """
    if debug is None:
        debug = is_debug_mode()

    root = logging.getLogger(LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.WARNING)
    console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root.addHandler(console)

    if debug:
        log_dir = log_dir or Path.home() / '.claude' / 'logs'
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / 'shadowpoint.log',
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=3,
                encoding='utf-8'
            )
        except OSError as e:
            root.warning(f"Could not open debug log in {log_dir}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            root.addHandler(file_handler)

    return root
