import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


__version__ = '1.0.0'


def configure_logging(level: str = 'INFO', log_dir: Optional[str] = None):
    """
    Configure process-wide logging.

    Console output is always enabled. When log_dir is given, a rotating
    file handler is added as well. Safe to call again; handlers are replaced.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)
        log_dir: Optional directory for pgbackup.log
    """
    log_level = logging.getLevelName(str(level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'pgbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # boto is noisy at DEBUG
    logging.getLogger('botocore').setLevel(max(log_level, logging.INFO))
    logging.getLogger('apscheduler').setLevel(max(log_level, logging.INFO))

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
