"""Backup manager for Docker Compose services and plain directories."""

import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(level=None, log_dir=None):
    """
    Configure application logging.

    Args:
        level: Log level name (e.g. 'DEBUG'); defaults to LOG_LEVEL env var or INFO
        log_dir: Optional directory for a rotating log file

    Returns:
        The configured root logger
    """
    level_name = (level or os.environ.get('LOG_LEVEL') or 'INFO').upper()
    log_level = getattr(logging, level_name, None)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'backup-manager.log'),
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

    root = logging.getLogger()
    root.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return root
