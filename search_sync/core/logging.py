"""
Configuracion de loguru para el proceso de sincronizacion.
"""
import sys

from loguru import logger

from search_sync.core.config import Settings


def configure_logging(settings: Settings, *, log_to_file: bool = True) -> None:
    """
    Reemplaza el sink por defecto de loguru.

    - stderr con el nivel configurado
    - archivo rotativo (500 MB, 10 dias) si log_to_file
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)

    if log_to_file and settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL
        )
