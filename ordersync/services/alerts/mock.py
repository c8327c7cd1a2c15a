"""
Mock Alert Service

Simulates tones and desktop notifications for development.
Nothing is played or displayed - alerts are recorded and logged.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import random
from typing import List, Tuple

from ordersync.services.alerts.base import AlertKind, AlertResult, BaseAlertService

logger = logging.getLogger(__name__)


class MockAlertService(BaseAlertService):
    """Mock alert service for development and tests."""

    def __init__(self, failure_rate: float = 0.0, latency: Tuple[float, float] = (0.0, 0.0)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.tones: List[AlertKind] = []
        self.notifications: List[Tuple[str, str]] = []
        logger.info(f"MockAlertService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate output latency."""
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def play_tone(self, kind: AlertKind) -> AlertResult:
        """Simulate playing a tone."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock tone failed (simulated): {kind.value}")
            return AlertResult(
                success=False,
                kind=kind.value,
                error_message="Simulated audio failure",
                provider="mock",
            )

        self.tones.append(kind)
        logger.info(f"Mock tone played: {kind.value}")
        return AlertResult(success=True, kind=kind.value, provider="mock")

    async def show_notification(self, title: str, body: str) -> AlertResult:
        """Simulate a desktop notification."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock notification failed (simulated): {title}")
            return AlertResult(
                success=False,
                kind="desktop",
                error_message="Simulated notification failure",
                provider="mock",
            )

        self.notifications.append((title, body))
        logger.info(f"Mock notification: {title} - {body}")
        return AlertResult(success=True, kind="desktop", provider="mock")

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
