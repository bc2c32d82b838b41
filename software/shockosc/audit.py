"""Structured audit trail for shocks fired, suppressed and session lifecycle."""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

REPO_ROOT = Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    log_dir_env = os.environ.get("SHOCKOSC_LOG_DIR")
    if log_dir_env:
        candidate = Path(log_dir_env)
        if candidate.is_absolute():
            return candidate
        return REPO_ROOT / candidate
    return REPO_ROOT / "logs"


class AuditLogger:
    def __init__(self, log_dir: Optional[Path] = None):
        log_dir = Path(log_dir) if log_dir is not None else resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = log_dir / "ops_events.jsonl"
        self.operator = (
            os.environ.get("OPERATOR_ID")
            or os.environ.get("USER")
            or os.environ.get("USERNAME")
            or "unknown"
        )
        self.host = os.environ.get("HOSTNAME", "unknown_host")
        # check and send loops both write here
        self._lock = threading.Lock()

    def write(self, action: str, status: str = "info", message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operator": self.operator,
            "host": self.host,
            "action": action,
            "status": status,
        }
        if message:
            event["message"] = message
        if details is not None:
            event["details"] = details
        line = json.dumps(event, ensure_ascii=False) + "\n"
        with self._lock:
            with self.log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)
