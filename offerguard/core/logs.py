"""
offerguard/core/logs.py

Logging setup for processes that embed offerguard.

Library modules only ever do `logger = logging.getLogger(__name__)`.
configure_logging() is called once, from an entry point (the CLI or the
embedding service), and attaches handlers to the "offerguard" logger only,
so a host application's own root configuration is left alone.

Console output goes to stderr: stdout belongs to the CLI's verdicts.
"""

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER_NAME = "offerguard"

_FORMAT  = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def build_dict_config(level: str = "INFO", log_file: Optional[str] = None) -> Dict[str, Any]:
    level = level.upper()
    handlers: Dict[str, Any] = {
        "console": {
            "class":     "logging.StreamHandler",
            "level":     level,
            "formatter": "standard",
            "stream":    "ext://sys.stderr",
        }
    }
    names = ["console"]

    if log_file:
        handlers["file"] = {
            "class":       "logging.handlers.RotatingFileHandler",
            "level":       level,
            "formatter":   "standard",
            "filename":    str(log_file),
            "maxBytes":    5_000_000,
            "backupCount": 3,
            "encoding":    "utf-8",
        }
        names.append("file")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": _FORMAT, "datefmt": _DATEFMT},
        },
        "handlers": handlers,
        "loggers": {
            LOGGER_NAME: {
                "level":     level,
                "handlers":  names,
                "propagate": False,
            },
        },
    }


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Install handlers on the offerguard logger. Safe to call again."""
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_dict_config(level, log_file))
