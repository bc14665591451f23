#!/usr/bin/env python3
"""Launcher for the PA-API gateway (server plus cache/log maintenance flags)"""
import json
import os
import sys
import time
from typing import List, Optional

from glowbot_paapi.cache.factory import create_cache
from glowbot_paapi.core import log_utils
from glowbot_paapi.core.config import PaapiConfig
from glowbot_paapi.core.log_utils import get_logger
from glowbot_paapi.web.http_server import run_server

logger = get_logger("launcher")


def clear_cache(config: PaapiConfig) -> None:
    cache = create_cache(config)
    cache.clear()
    logger.info("[LAUNCHER] Cache cleared (%s)", cache.backend_name)


def sweep_cache(config: PaapiConfig) -> int:
    removed = create_cache(config).cleanup()
    logger.info("[LAUNCHER] Removed %s expired cache entries", removed)
    return removed


def clear_logs(log_path: Optional[str] = None) -> None:
    log_path = log_path or log_utils.api_log_path()
    os.makedirs(os.path.dirname(log_path), exist_ok=True)
    reset = [{"timestamp": time.strftime("%Y-%m-%d %H:%M:%S"), "event": "Logs reset successfully"}]
    with open(log_path, "w", encoding="utf-8") as f:
        json.dump(reset, f)
    logger.info("[LAUNCHER] Logs reset in %s", os.path.dirname(log_path))


def _port_arg(args: List[str]) -> Optional[int]:
    for arg in args:
        if arg.startswith("--port="):
            return int(arg.split("=", 1)[1])
    return None


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    config = PaapiConfig.from_env()

    # Maintenance flags run and exit
    if "--clearcache" in args:
        clear_cache(config)
        return 0
    if "--sweep" in args:
        sweep_cache(config)
        return 0
    if "--clearlogs" in args:
        clear_logs()
        return 0

    if not config.amazon_enabled:
        logger.warning("[LAUNCHER] Starting without PA-API access: %s", config.amazon_message)
    run_server(config, port=_port_arg(args))
    return 0


if __name__ == "__main__":
    sys.exit(main())
