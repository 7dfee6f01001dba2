"""
Logging configuration shared by the API process and the standalone scheduler

- Log rotation (keep 7 files, max 50MB per file)
- Reduced HTTP/SQL noise
"""
import logging
import os
from logging.handlers import RotatingFileHandler

from .config import settings


def setup_logging(log_name: str = "fiscal_engine.log", level: int = logging.INFO) -> None:
    os.makedirs(settings.LOGS_PATH, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(settings.LOGS_PATH, log_name),
        maxBytes=50*1024*1024,  # 50MB
        backupCount=7,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    ))

    # Disable noisy loggers BEFORE basicConfig
    for noisy in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool',
                  'httpx', 'httpcore', 'apscheduler'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler])
