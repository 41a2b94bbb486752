"""
Logging for the portfolio service.

LOG_LEVEL sets the root level (default INFO). LOG_JSON=1 emits one JSON
object per line; ledger and price code attach `tx_id`, `asset` or `source`
through `extra=` and those keys are copied into the record.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_KEYS = ("tx_id", "asset", "source", "symbols")
QUIET = ("uvicorn.access", "httpx", "httpcore", "urllib3")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                out[key] = value
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str)


def configure_logging(default_level: str = "INFO") -> None:
    level = logging.getLevelName((os.getenv("LOG_LEVEL") or default_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes"):
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s | %(message)s"))

    root = logging.getLogger()
    # replace, not append: uvicorn --reload calls startup again
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
