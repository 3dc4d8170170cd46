import logging
import os
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(os.getenv("PPVRELAY_LOG_DIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

_RUN_STAMP = datetime.now().strftime("%Y%m%d-%H%M%S")

_LOGGERS = {}


def get_logger(
    name: str,
    *,
    runtime: str = "ppvrelay",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.scheduler, relay.proxy)
    - runtime: log file prefix (ppvrelay | probe)

    One log file is opened per runtime per process run.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(logging.INFO)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    logfile = LOG_DIR / f"{runtime}-{_RUN_STAMP}.log"

    file_handler = logging.FileHandler(logfile, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
