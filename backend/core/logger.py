# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261018v1
# ---------------------------------------------------------------------------
"""
Centralised logging configuration.

Levels, rotation and format live in etc/logging.conf.  The file uses
%(log_file)s as a placeholder; it is patched with the real path before
being handed to the standard-library fileConfig loader.

Import the ready-made logger anywhere:
    from core.logger import logger

Never log raw emails, tokens, codes or secrets.  Use ``redact`` for
identifiers that have to appear in a log line.
"""

import configparser
import hashlib
import logging
import logging.config
from pathlib import Path

# project root: backend/core/logger.py  →  ../../  →  trustgate/
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_LOG_DIR = _PROJECT_ROOT / "log"
_LOG_FILE = _LOG_DIR / "app.log"
_LOGGING_CONF = _PROJECT_ROOT / "etc" / "logging.conf"

_LOG_DIR.mkdir(exist_ok=True)

_raw = _LOGGING_CONF.read_text(encoding="utf-8")
# Forward slashes keep the path valid inside the handler's args tuple on Windows
_raw = _raw.replace("%(log_file)s", _LOG_FILE.as_posix())

# RawConfigParser: the format strings contain %(asctime)s and friends,
# which ConfigParser would try to interpolate.
_parser = configparser.RawConfigParser()
_parser.read_string(_raw)

logging.config.fileConfig(_parser, disable_existing_loggers=False)

logger = logging.getLogger("trustgate")


def redact(value: str | None) -> str:
    """Short, stable, non-reversible tag for an email or token."""
    if not value:
        return "-"
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:12]
