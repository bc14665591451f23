import json
import logging
import os
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

from glowbot_paapi.core.config import PROJECT_ROOT, _str_to_bool, load_env_files

# Explicit override for the call log; None means <LOG_DIR>/paapilogs.json
PAAPI_LOGS_PATH: Optional[str] = None

_configured = False
_write_lock = threading.Lock()


def logs_dir() -> str:
    return os.getenv("LOG_DIR") or os.path.join(PROJECT_ROOT, "logs")


def api_log_path() -> str:
    """PA-API call outcomes (operation/status/duration)."""
    return PAAPI_LOGS_PATH or os.path.join(logs_dir(), "paapilogs.json")


def setup_logging() -> None:
    global _configured
    if _configured:
        return

    # LOG_* may live in config/paapi.env; load it before reading them
    load_env_files()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level, logging.INFO)
    log_to_file = _str_to_bool(os.getenv("LOG_TO_FILE"), False)
    log_file = os.getenv("LOG_FILE", os.path.join(logs_dir(), "gateway.log"))

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    # Avoid duplicate handlers
    if not root.handlers:
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        if log_to_file:
            try:
                os.makedirs(os.path.dirname(log_file), exist_ok=True)
                fh = RotatingFileHandler(log_file, maxBytes=2 * 1024 * 1024, backupCount=3)
                fh.setFormatter(formatter)
                root.addHandler(fh)
            except OSError as e:
                root.warning("Failed to initialize file logging: %s", e)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


logger = get_logger(__name__)


def _read_entries(log_path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(log_path):
        return []
    with open(log_path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError:
            return []
    return data if isinstance(data, list) else []


def _write_to_log_file(log_path: str, entry: Dict[str, Any], max_entries: int = 200) -> None:
    """Append entry to a bounded JSON list file, replacing it atomically."""
    entry = dict(entry)
    entry["timestamp"] = time.strftime("%Y-%m-%d %H:%M:%S")

    try:
        with _write_lock:
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
            logs = _read_entries(log_path)
            logs.append(entry)
            logs = logs[-max_entries:]  # Keep last N entries
            tmpfile = log_path + ".tmp"
            with open(tmpfile, "w", encoding="utf-8") as f:
                json.dump(logs, f, indent=2)
            # Windows-safe replace with brief retries to avoid sharing violations
            for attempt in range(10):
                try:
                    os.replace(tmpfile, log_path)
                    break
                except PermissionError:
                    if attempt == 9:
                        raise
                    time.sleep(0.05)
    except OSError as e:
        logger.warning("Failed to write log to %s: %s", log_path, e)


def write_api_log(
    operation: str,
    success: bool,
    duration_ms: int,
    status_code: Optional[int] = None,
    attempts: int = 1,
    error: Optional[str] = None,
    log_path: Optional[str] = None,
) -> None:
    """Record one PA-API operation outcome for the dashboard/status views."""
    entry = {
        "event": "paapi_call",
        "operation": operation,
        "success": success,
        "status_code": status_code,
        "attempts": attempts,
        "duration_ms": duration_ms,
    }
    if error:
        entry["error"] = error[:200] + "..." if len(error) > 200 else error  # Truncate long bodies
    _write_to_log_file(log_path or api_log_path(), entry)


def read_api_log(log_path: Optional[str] = None) -> List[Dict[str, Any]]:
    with _write_lock:
        try:
            return _read_entries(log_path or api_log_path())
        except OSError:
            return []
