# src/mcp_pkg_docs/logger.py
"""Project-wide logger. Writes to stderr so stdout stays free for the stdio transport."""
from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("mcp_pkg_docs")

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_handler)
    logger.setLevel(os.getenv("PKG_DOCS_LOG_LEVEL", "INFO").upper())
    logger.propagate = False
