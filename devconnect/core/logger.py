import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional, Union

from devconnect.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d - %(message)s"

CONSOLE_HANDLER = "devconnect.console"
FILE_HANDLER = "devconnect.file"


def _logger_levels() -> Dict[str, str]:
    """Per-logger overrides applied on top of the root level."""
    return {
        "devconnect.websocket": settings.WEBSOCKET_LOG_LEVEL,
        "devconnect.services.presence": settings.PRESENCE_LOG_LEVEL,
        # SQL echo only when debugging
        "sqlalchemy.engine": "INFO" if settings.DEBUG else "WARNING",
        "aiosqlite": "WARNING",
    }


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure logging for the realtime service.

    Console and rotating file handlers go on the root logger, each added once
    no matter how often this runs. Uvicorn's loggers propagate to them instead
    of keeping their own. Chat and presence loggers get their own levels from
    settings so socket chatter can be turned down without losing REST logs.
    """
    root = logging.getLogger()
    root.setLevel(level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL))

    formatter = logging.Formatter(LOG_FORMAT)
    existing = {h.get_name() for h in root.handlers}

    if CONSOLE_HANDLER not in existing:
        ch = logging.StreamHandler()
        ch.set_name(CONSOLE_HANDLER)
        ch.setFormatter(formatter)
        root.addHandler(ch)

    if FILE_HANDLER not in existing:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            log_dir / settings.LOG_FILE,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        fh.set_name(FILE_HANDLER)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    for name, logger_level in _logger_levels().items():
        logging.getLogger(name).setLevel(logger_level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = []
        logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
