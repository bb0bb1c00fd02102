"""
TradeLedger — Logging Setup
============================
Library modules only create module loggers (logging.getLogger(__name__)).
The entry point calls setup_logging() once to attach a stdout handler.
"""

from __future__ import annotations

import logging
import sys

from config import LOG_LEVEL

_FORMAT  = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_logging(level: str | int | None = None) -> None:
    """Configure the root logger to write formatted records to stdout.

    Safe to call more than once — a second call only adjusts the level.
    """
    root_logger = logging.getLogger()
    if not any(getattr(h, '_tradeledger', False) for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        handler._tradeledger = True
        root_logger.addHandler(handler)
    root_logger.setLevel(level if level is not None else LOG_LEVEL)

    # pandas emits chatty DEBUG records on some operations
    logging.getLogger('pandas').setLevel(logging.WARNING)
