from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional


def log_fields(**fields: Any) -> Dict[str, Dict[str, Any]]:
    """
    Structured fields for a log call:

        log.warning("failed to download tile %s", tile, extra=log_fields(tile=tile.path))

    None values are dropped so optional context can be passed unconditionally.
    """
    return {"extra": {k: v for k, v in fields.items() if v is not None}}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, for both the console and the run log file:
      { "t": 1700000000000, "lvl": "INFO", "name": "downloader", "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict) and extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)
        # TileId, Path and friends fall back to str()
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: Optional[str]) -> int:
    lvl = getattr(logging, (name or os.environ.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    return lvl if isinstance(lvl, int) else logging.INFO


def attach_log_file(path: str) -> logging.Handler:
    """
    Append JSON lines to `path` (parent dirs created) in addition to stdout.
    Long preset runs keep their failure list here after the console scrolls
    away. Attaching the same file twice returns the existing handler.
    """
    root = logging.getLogger()
    target = str(Path(path).resolve())
    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and h.baseFilename == target:
            return h
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    return handler


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger once with JSON output on stdout.
    Level precedence: explicit `level`, env LOG_LEVEL, INFO.
    Later calls only apply what they are given: an explicit level, a run log file.
    """
    root = logging.getLogger()
    if not getattr(root, "_tiles_configured", False):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(_level(level))
        root._tiles_configured = True  # type: ignore[attr-defined]
    elif level:
        root.setLevel(_level(level))

    if log_file:
        attach_log_file(log_file)


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the root on first use."""
    setup_logging()
    return logging.getLogger(name)

