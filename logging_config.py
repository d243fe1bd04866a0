from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from utils.paths import LOG_DIR

_LOG_CONFIGURED = False

FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | pid=%(process)d tid=%(threadName)s | %(message)s"
)


def get_logger(name: str, config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Return a logger configured for the application.

    ``config`` is the ``logging`` section of the YAML configuration; it is only
    read the first time this is called.
    """
    global _LOG_CONFIGURED
    if not _LOG_CONFIGURED:
        cfg = config or {}
        log_file = Path(cfg.get("file") or LOG_DIR / "app.log")
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=int(cfg.get("max_size_mb", 2)) * 1024 * 1024,
            backupCount=int(cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FORMAT))

        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO))
        stream_handler.setFormatter(logging.Formatter(FORMAT))

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        root.addHandler(stream_handler)
        root.info("Log file: %s", file_handler.baseFilename)
        _LOG_CONFIGURED = True
    return logging.getLogger(name)
