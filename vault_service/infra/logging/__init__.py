"""Logging infrastructure.

Basic usage:
    import logging

    from vault_service.infra.logging import setup_logging

    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Object stored", extra={"object_id": "img-1"})
"""

from vault_service.infra.logging.config import configure_logging, setup_logging, shutdown
from vault_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "JSONFormatter",
    "configure_logging",
    "setup_logging",
    "shutdown",
]
