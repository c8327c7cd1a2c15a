"""
Desktop Alert Service

Production implementation using the host platform:
- Tones are synthesized once, cached as WAV files and handed to the
  first available player (paplay, aplay, afplay)
- Desktop notifications go through notify-send (Linux) or osascript (macOS)

Missing tools degrade to a failed AlertResult; nothing is raised.

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List, Optional

from ordersync.core.config import get_settings
from ordersync.services.alerts import tones
from ordersync.services.alerts.base import AlertKind, AlertResult, BaseAlertService

logger = logging.getLogger(__name__)

PLAYERS = ("paplay", "aplay", "afplay")


class DesktopAlertService(BaseAlertService):
    """Alert service backed by local audio players and notifiers."""

    def __init__(self, output_dir: Optional[str] = None, sample_rate: Optional[int] = None):
        settings = get_settings()
        self.output_dir = Path(output_dir or settings.alert_output_dir)
        self.sample_rate = sample_rate or settings.alert_sample_rate
        self.app_name = settings.restaurant_name

        self.player = next((p for p in PLAYERS if shutil.which(p)), None)
        if self.player is None:
            logger.warning("No audio player found, tones disabled")

        if shutil.which("notify-send"):
            self.notifier = "notify-send"
        elif shutil.which("osascript"):
            self.notifier = "osascript"
        else:
            self.notifier = None
            logger.warning("No desktop notifier found, notifications disabled")

        logger.info("DesktopAlertService initialized")

    @property
    def provider_name(self) -> str:
        return "desktop"

    def _tone_path(self, kind: AlertKind) -> Path:
        path = self.output_dir / f"{kind.value}-{self.sample_rate}.wav"
        if not path.exists():
            tones.write_wav(path, kind, self.sample_rate)
        return path

    async def _run(self, args: List[str]) -> Optional[str]:
        """Run a command; returns an error message or None on success."""
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as e:
            return str(e)
        if process.returncode != 0:
            return (stderr or b"").decode("utf-8", "replace").strip() or f"exit {process.returncode}"
        return None

    async def play_tone(self, kind: AlertKind) -> AlertResult:
        """Play the cue through the local player."""
        if self.player is None:
            return AlertResult(success=False, kind=kind.value, error_message="No audio player", provider=self.provider_name)

        try:
            path = await asyncio.to_thread(self._tone_path, kind)
        except OSError as e:
            logger.error(f"Could not render {kind.value} tone: {e}")
            return AlertResult(success=False, kind=kind.value, error_message=str(e), provider=self.provider_name)

        error = await self._run([self.player, str(path)])
        if error:
            logger.warning(f"Tone {kind.value} failed: {error}")
            return AlertResult(success=False, kind=kind.value, error_message=error, provider=self.provider_name)

        logger.debug(f"Tone played: {kind.value}")
        return AlertResult(success=True, kind=kind.value, provider=self.provider_name)

    async def show_notification(self, title: str, body: str) -> AlertResult:
        """Raise a desktop notification."""
        if self.notifier is None:
            return AlertResult(success=False, kind="desktop", error_message="No notifier", provider=self.provider_name)

        if self.notifier == "notify-send":
            args = ["notify-send", "--app-name", self.app_name, title, body]
        else:
            safe_title = title.replace('"', "'")
            safe_body = body.replace('"', "'")
            args = ["osascript", "-e", f'display notification "{safe_body}" with title "{safe_title}"']

        error = await self._run(args)
        if error:
            logger.warning(f"Desktop notification failed: {error}")
            return AlertResult(success=False, kind="desktop", error_message=error, provider=self.provider_name)

        return AlertResult(success=True, kind="desktop", provider=self.provider_name)

    async def health_check(self) -> bool:
        return self.player is not None or self.notifier is not None
