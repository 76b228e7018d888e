import logging
import sys

from config import LOG_LEVEL

logger = logging.getLogger("babystore")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(handler)

# handlers live on the "babystore" logger only
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """Child of the "babystore" logger, or the package logger itself."""
    return logging.getLogger(f"babystore.{name}") if name else logger
