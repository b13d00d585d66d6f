import logging

from ticketa.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

def setup_logging() -> logging.Logger:
    """Configure the root logger once and return the package logger"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    logger = logging.getLogger("ticketa")
    logger.setLevel(level)
    return logger
