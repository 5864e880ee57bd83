"""
Logging setup for subscriber-sync.

Console output always; rotating service and error-only log files when
file logging is enabled.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from core.models.config import GlobalSettings
from .defaults import LOG_FORMAT, LOG_FILE_MAX_BYTES, LOG_FILE_BACKUP_COUNT


def setup_logging(
    settings: Optional[GlobalSettings] = None,
    level: Optional[str] = None
) -> List[logging.Handler]:
    """
    Configure the root logger.

    Args:
        settings: Process settings (log level, file logging, log directory)
        level: Overrides ``settings.log_level``

    Returns:
        The handlers installed on the root logger
    """
    settings = settings or GlobalSettings()
    level_name = (level or settings.log_level).upper()
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level_name)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers: List[logging.Handler] = [console]

    log_file = settings.get_log_file()
    error_log_file = settings.get_error_log_file()
    if log_file is not None and error_log_file is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)

        service_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT,
            encoding='utf-8'
        )
        service_handler.setFormatter(formatter)
        handlers.append(service_handler)

        error_handler = RotatingFileHandler(
            error_log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        handlers.append(error_handler)

    for handler in handlers:
        root.addHandler(handler)

    # Driver internals are noisy at DEBUG
    for noisy in ('pymongo', 'opensearch', 'urllib3'):
        logging.getLogger(noisy).setLevel(max(root.level, logging.WARNING))

    return handlers
