# liverelay/logs.py
# stdout + rotating file logging shared by the app, uvicorn and httpx.

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from . import config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_handlers: list[logging.Handler] = []
_configured = False


def log_file_path() -> str:
    return os.path.join(config.LOG_DIR, "relay.log")


def _ensure_logger_handlers(name: str, propagate: Optional[bool] = None) -> None:
    logger = logging.getLogger(name)
    for handler in _handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    if propagate is not None:
        logger.propagate = propagate
    if logger.level == logging.NOTSET:
        logger.setLevel(config.LOG_LEVEL)


def configure_logging() -> logging.Logger:
    """Install handlers once and return the service logger."""
    global _configured
    log = logging.getLogger("liverelay")
    if _configured:
        return log

    log_dir = config.LOG_DIR
    log_file = log_file_path()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _handlers.append(stream_handler)

    file_handler: Optional[logging.Handler] = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=7, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _handlers.append(file_handler)
    except OSError:
        file_handler = None

    logging.basicConfig(level=config.LOG_LEVEL, handlers=_handlers, force=True)
    _configured = True

    if file_handler is not None:
        log.info("[LOGGING] file logging enabled path=%s", log_file)
    else:
        log.warning("[LOGGING] file logging disabled; falling back to stdout only log_dir=%s", log_dir)

    for logger_name in (
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
        "uvicorn.asgi",
        "uvicorn.lifespan",
    ):
        _ensure_logger_handlers(logger_name, propagate=False)
    _ensure_logger_handlers("httpx")
    return log


def format_elapsed(seconds: float) -> str:
    """Render a request duration the way the access log prints it."""
    millis = int(seconds * 1000)
    if millis < 1000:
        return f"{millis}ms"
    return f"{round(seconds):,}s"
