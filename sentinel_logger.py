"""
Sentinel-Vision — Structured Audit Logger
==========================================
Records model lifecycle events, detection ticks, alerts and errors
in JSONL format for post-mortem analysis.

Key Features:
  - JSONL (Newline Delimited JSON) format
  - Thread-safe appends (engine loop + model init thread)
  - Levels: SYSTEM, AUDIT, WARN, ERROR
  - NumPy / dataclass / Enum aware serialization
"""

import dataclasses
import json
import logging
import os
import sys
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

_log = logging.getLogger("AuditLog")


class SentinelJSONEncoder(json.JSONEncoder):
    """Handles NumPy scalars/arrays, Enums and dataclasses."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        return super().default(obj)


class SentinelLogger:
    """Append-only JSONL audit trail.

    Each line: {"timestamp", "level", "event", "data"}.
    """

    def __init__(self, log_path: str = "logs/sentinel_audit.jsonl"):
        self.log_path = log_path
        log_dir = os.path.dirname(self.log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "python_version": sys.version,
            "platform": sys.platform
        }, level="SYSTEM", event="system_startup")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append one entry. Writes after close() are dropped."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data
        }
        line = json.dumps(entry, cls=SentinelJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def log_frame(self, frame_data: Dict[str, Any]):
        """Record one detection tick."""
        self.log(frame_data, level="AUDIT", event="detection_tick")

    def warn(self, message: str, context: Optional[Dict] = None):
        _log.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[BaseException] = None):
        _log.error(message)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Clean shutdown. Safe to call twice."""
        if self._file.closed:
            return
        self.log({"message": "Logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            self._file.close()


_logger = None


def get_logger(log_path: str = "logs/sentinel_audit.jsonl") -> SentinelLogger:
    """Process-wide logger for the launcher."""
    global _logger
    if _logger is None or _logger.closed:
        _logger = SentinelLogger(log_path)
    return _logger
