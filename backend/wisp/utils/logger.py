"""Shared ``wisp`` logger; messages carry a bracketed subsystem tag such as ``[PIPELINE]``."""
import logging
import sys
from typing import Optional

from wisp.config import settings


def resolve_level(environment: str, override: Optional[str] = None) -> int:
    """Explicit LOG_LEVEL wins; otherwise DEBUG in development and INFO elsewhere."""
    if override:
        level = logging.getLevelName(override.upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if environment == "development" else logging.INFO


def configure_logger(name: str = "wisp") -> logging.Logger:
    level = resolve_level(settings.environment, settings.log_level)
    configured = logging.getLogger(name)
    configured.setLevel(level)

    # Worker and API processes both import this module; attach the handler once
    if not configured.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        configured.addHandler(handler)

    # Keep uvicorn and arq root handlers from printing every line twice
    configured.propagate = False
    return configured


logger = configure_logger()

__all__ = ["logger"]
