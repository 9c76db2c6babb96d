# src/hubuum_console/log_utils.py

import json
import logging
import re
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Fields holding request paths; redaction is applied to these only.
REDACTED_FIELDS = ("path", "source")

_LOGOUT_TOKEN_SEGMENT = re.compile(r"(/auth/logout/token/)[^/?#]+", re.IGNORECASE)
_SECRET_QUERY_PARAM = re.compile(r"([?&](?:password|token)=)[^&#]+", re.IGNORECASE)


def redact_path(path: str) -> str:
    """Mask credentials that may appear in an upstream path or query string."""
    if not path.startswith("/"):
        path = f"/{path}"
    path = _LOGOUT_TOKEN_SEGMENT.sub(r"\1[redacted]", path)
    return _SECRET_QUERY_PARAM.sub(r"\1[redacted]", path)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record as a JSON object."""
    if not logger.isEnabledFor(level):
        return
    record = {"event": event}
    for key, value in fields.items():
        if key in REDACTED_FIELDS and isinstance(value, str):
            value = redact_path(value)
        record[key] = value
    logger.log(level, json.dumps(record, default=str))


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_hubuum_console", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._hubuum_console = True
        root.addHandler(handler)
