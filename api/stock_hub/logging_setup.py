# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers, os
from pathlib import Path

LOG_FILENAME = "stock_hub.log"


def setup_logging(settings) -> Path:
    """Configure rotating file logging under STOCK_DATA_ROOT/logs/stock_hub.log"""
    root = Path(settings.STOCK_DATA_ROOT).expanduser()
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME
    level = logging.getLevelName(str(settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8", delay=True)
    handler.setFormatter(fmt)
    handler.setLevel(level)

    logger = logging.getLogger()  # root
    logger.setLevel(level)
    # avoid duplicate handlers
    if not any(_writes_to(h, log_path) for h in logger.handlers):
        logger.addHandler(handler)

    # also wire uvicorn loggers (if present)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not any(_writes_to(h, log_path) for h in lg.handlers):
            lg.addHandler(handler)

    return log_path


def _writes_to(handler: logging.Handler, log_path: Path) -> bool:
    return isinstance(handler, logging.handlers.RotatingFileHandler) and \
        getattr(handler, "baseFilename", "") == os.path.abspath(log_path)
