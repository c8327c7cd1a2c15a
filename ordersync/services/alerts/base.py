"""
Alert Service Abstract Base Class

Defines the interface for the audible and desktop cues raised on push
events. Alerts are best effort: results report failures, state updates
never wait on them.

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AlertKind(str, Enum):
    NOTIFICATION = "notification"
    COMPLETION = "completion"


@dataclass
class AlertResult:
    """Result from raising an alert."""
    success: bool
    kind: str
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseAlertService(ABC):
    """Abstract base class for alert services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def play_tone(self, kind: AlertKind) -> AlertResult:
        """Play the cue for a notification kind."""
        pass

    @abstractmethod
    async def show_notification(self, title: str, body: str) -> AlertResult:
        """Raise a desktop notification."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check the alert outputs are usable."""
        pass
