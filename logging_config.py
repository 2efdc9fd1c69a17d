# logging_config.py
import logging
import os
from logging.handlers import RotatingFileHandler

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging():
    """Configures console logging, plus a rotating file when LOG_FILE_PATH is set."""
    # Get the root logger
    logger = logging.getLogger()

    # Avoid adding handlers multiple times
    if getattr(logger, '_ecoquest_configured', False):
        return

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    formatter = logging.Formatter(FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file = os.environ.get("LOG_FILE_PATH")
    if log_file:
        # 10MB per file, keep last 5 files
        file_handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger._ecoquest_configured = True
