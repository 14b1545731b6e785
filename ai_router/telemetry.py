"""Logging for the AI provider router.

Every orchestration outcome is one JSON line on the ``ai_router`` logger,
mirrored to stdout and an append-only log file.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("ai_router")

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _has_file_handler(path: Path) -> bool:
    target = str(path.resolve())
    return any(
        isinstance(h, logging.FileHandler) and h.baseFilename == target
        for h in logger.handlers
    )


def setup_logging(log_file: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Attach stdout and file handlers to the router logger.

    Safe to call repeatedly: a handler is only added once per destination.

    Args:
        log_file: Append-only log file. Skipped when None.
        level: Minimum level for the logger and its handlers.
    """
    logger.setLevel(level)
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    has_stream = any(type(h) is logging.StreamHandler for h in logger.handlers)
    if not has_stream:
        stream = logging.StreamHandler()
        stream.setLevel(level)
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    if log_file:
        log_path = Path(log_file)
        if not _has_file_handler(log_path):
            os.makedirs(log_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
    return logger


def log_event(event: str, *, request_id: str, level: int = logging.INFO, **fields: Any) -> None:
    """Log a single orchestration event as one JSON line.

    Args:
        event: Short event label (e.g. "cache_hit", "success", "degraded").
        request_id: Router-assigned request ID.
        level: Logging level for the record.
        **fields: Extra JSON-serializable detail. None values are omitted.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "event": event,
    }
    record.update({k: v for k, v in fields.items() if v is not None})

    logger.log(level, json.dumps(record, default=str))
