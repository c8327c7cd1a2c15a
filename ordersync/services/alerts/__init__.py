"""
Alert Service Factory

Returns Mock or Desktop alert service based on ENV_MODE.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from ordersync.core.config import get_settings
from ordersync.services.alerts.base import AlertKind, AlertResult, BaseAlertService
from ordersync.services.alerts.mock import MockAlertService
from ordersync.services.alerts.real import DesktopAlertService

logger = logging.getLogger(__name__)


@lru_cache()
def get_alert_service() -> BaseAlertService:
    """Get the configured alert service."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Alert Service: Using MockAlertService (development mode)")
        return MockAlertService(failure_rate=0.05, latency=(0.01, 0.05))
    else:
        logger.info(f"Alert Service: Using DesktopAlertService ({settings.env_mode.value} mode)")
        return DesktopAlertService()


def reset_alert_service() -> None:
    """Clear the cached service instance."""
    get_alert_service.cache_clear()


__all__ = [
    "get_alert_service",
    "reset_alert_service",
    "AlertKind",
    "AlertResult",
    "BaseAlertService",
    "MockAlertService",
    "DesktopAlertService",
]
