import sys

from loguru import logger


def configure_logging(level: str = "INFO", sink=sys.stdout):
    """Replace loguru's default sink with the compact console format"""
    logger.remove()
    logger.add(
        sink,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level,
    )
