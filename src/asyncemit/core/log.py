from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

_configured = False

ROOT_NAME = "asyncemit"


class JsonHandler(logging.StreamHandler):
    """One JSON object per line on stdout."""
    def __init__(self):
        super().__init__(stream=sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            obj = {
                "ts": record.created,
                "lvl": record.levelname,
                "name": record.name,
                "msg": record.getMessage(),
            }
            for k in ("filename", "lineno", "funcName"):
                obj[k] = getattr(record, k, None)
            if record.exc_info:
                obj["exc"] = logging.Formatter().formatException(record.exc_info)
            self.stream.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
            self.flush()
        except Exception:  # pragma: no cover
            self.handleError(record)


def _resolve_level(level: str) -> int:
    py_level = logging.getLevelName(level.upper())
    return py_level if isinstance(py_level, int) else logging.INFO


def setup(level: Optional[str] = None, json_mode: Optional[bool] = None, *, force: bool = False) -> None:
    """Configure the root logger.
    - Loads .env, then reads LOG_LEVEL / LOG_JSON when args are None
    - Subsequent calls are no-ops unless force=True
    """
    global _configured
    if _configured and not force:
        return

    load_dotenv()

    py_level = _resolve_level(level or os.getenv("LOG_LEVEL", "INFO"))
    json_flag = json_mode if json_mode is not None else (os.getenv("LOG_JSON", "0") == "1")

    root = logging.getLogger()
    # pytest may call setup() repeatedly
    root.handlers.clear()
    root.setLevel(py_level)

    if json_flag:
        root.addHandler(JsonHandler())
    else:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(logging.Formatter(fmt="[%(asctime)s] %(levelname)s %(name)s | %(message)s"))
        root.addHandler(handler)

    _configured = True


def get(name: str) -> logging.Logger:
    """Logger under the asyncemit namespace (absolute names are kept as-is)."""
    if name == ROOT_NAME or name.startswith(ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_NAME}.{name}")


def set_level(level: str) -> None:
    logging.getLogger().setLevel(_resolve_level(level))
