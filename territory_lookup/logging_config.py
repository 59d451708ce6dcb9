"""Logging setup shared by the API server and the CLI.

    LOG_LEVEL=DEBUG     override the level
    LOG_FORMAT=json     one JSON object per line (for log shipping)
"""

import json
import logging
import os
import sys
from datetime import datetime

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%H:%M:%S"

# `extra=` fields copied into JSON output when present
_EXTRA_FIELDS = ("address", "zip_code", "strategy", "duration_ms", "error")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in _EXTRA_FIELDS:
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(verbose: bool = False) -> None:
    level_name = os.environ.get("LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))

    logging.basicConfig(level=level, handlers=[handler], force=True)
