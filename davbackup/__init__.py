import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

__version__ = '1.0.0'


def configure_logging(debug: bool = False, log_dir: Optional[str] = None):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if debug else logging.INFO

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
            os.path.join(log_dir, 'davbackup.log'),
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

    # Scheduler chatter is only useful when debugging
    logging.getLogger('apscheduler').setLevel(logging.DEBUG if debug else logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
