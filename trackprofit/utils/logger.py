"""
Logging configuration
"""
from loguru import logger
import sys
from trackprofit.config import get_settings

settings = get_settings()


def setup_logger():
    """Configure stdout and rotating file sinks"""
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=settings.log_level
    )

    logger.add(
        "logs/trackprofit_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO"
    )

    # Error file
    logger.add(
        "logs/errors_{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="90 days",
        level="ERROR"
    )

    return logger


log = setup_logger()
