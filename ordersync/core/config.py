"""
Order Sync Configuration

One pydantic-settings object for the whole library, read from environment
variables or a .env file:
    - development: in-memory backend, push hub and session store; nothing to run
    - staging, production: REST backend, websocket push channel and a shared
      session store

ENV_MODE picks the service implementations handed to every surface, so a
kitchen screen runs unchanged against the local simulation or a live floor.

Usage:
    from ordersync.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # In-memory services
    else:
        # HTTP + websocket services

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
import sys
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """Deployment stage; anything but development talks to real servers."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class SessionBackend(str, Enum):
    """Where customer sessions (carts) are persisted."""
    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Order sync settings.

    Attributes:
        env_mode: development, staging or production
        debug: DEBUG-level logging

        # Backend
        api_base_url: REST base URL of the ordering backend
        request_timeout_seconds: Per-request timeout
        request_retry_attempts: Attempts for idempotent reads

        # Realtime
        realtime_url: Websocket URL of the push server
        realtime_reconnect_*: Capped exponential backoff parameters

        # Sessions
        session_backend: memory / file / redis
        session_ttl_hours: Staleness ceiling for persisted carts
        cancelled_order_cooldown_seconds: Fresh-start delay after a cancellation

        # Surfaces
        new_item_threshold_minutes: Age below which an item is highlighted as new
        session_gap_minutes: Gap that starts a new ordering session
        completed_display_delay_seconds: Grace before completed orders leave the queue
        manual_menu_grace_seconds: Protection window after "continue ordering"
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Deployment stage that selects mock or real services"
    )
    debug: bool = Field(
        default=False,
        description="Log at DEBUG level"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Restaurant Order Sync",
        description="Name shown in the startup banner"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Version shown in the startup banner"
    )
    restaurant_name: str = Field(
        default="Sangeet Restaurant",
        description="Restaurant display name used in notifications"
    )

    # ==========================================================================
    # BACKEND (REST)
    # ==========================================================================

    api_base_url: str = Field(
        default="http://localhost:5001/api",
        description="Base URL of the ordering REST API"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single REST call"
    )
    request_retry_attempts: int = Field(
        default=3,
        description="Attempts for idempotent reads on network/timeout errors"
    )
    request_retry_delay: float = Field(
        default=1.0,
        description="Base delay between read retries in seconds"
    )

    # ==========================================================================
    # REALTIME (PUSH)
    # ==========================================================================

    realtime_url: str = Field(
        default="ws://localhost:5001/ws",
        description="Websocket URL of the push server"
    )
    realtime_reconnect_attempts: int = Field(
        default=5,
        description="Reconnect attempts before a manual reload is required"
    )
    realtime_reconnect_delay: float = Field(
        default=1.0,
        description="Initial reconnect delay in seconds"
    )
    realtime_reconnect_max_delay: float = Field(
        default=30.0,
        description="Upper bound for the reconnect delay"
    )
    realtime_connect_timeout: float = Field(
        default=20.0,
        description="Timeout for the websocket opening handshake"
    )

    # ==========================================================================
    # SESSION STORE
    # ==========================================================================

    session_backend: Optional[SessionBackend] = Field(
        default=None,
        description="Session storage backend (defaults by env_mode)"
    )
    session_file_path: str = Field(
        default="data/sessions.json",
        description="JSON file used by the file session backend"
    )
    session_lock_timeout: int = Field(
        default=10,
        description="Seconds to wait for the session file lock"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis session backend"
    )
    session_key_prefix: str = Field(
        default="ordersync",
        description="Namespace prefix for persisted keys"
    )
    session_ttl_hours: float = Field(
        default=4.0,
        description="Sessions untouched for longer than this are wiped"
    )
    cancelled_order_cooldown_seconds: int = Field(
        default=300,
        description="Delay after a cancellation before the table gets a fresh start"
    )

    # ==========================================================================
    # SURFACES
    # ==========================================================================

    new_item_threshold_minutes: int = Field(
        default=30,
        description="Items younger than this are highlighted as new"
    )
    session_gap_minutes: int = Field(
        default=5,
        description="Gap between items that starts a new ordering session"
    )
    completed_display_delay_seconds: float = Field(
        default=5.0,
        description="How long a completed order stays in the active queue"
    )
    manual_menu_grace_seconds: float = Field(
        default=10.0,
        description="Protection against auto-promotion after 'continue ordering'"
    )

    # ==========================================================================
    # ALERTS
    # ==========================================================================

    sound_enabled: bool = Field(
        default=True,
        description="Play a tone on relevant push events"
    )
    desktop_notifications_enabled: bool = Field(
        default=True,
        description="Raise desktop notifications on relevant push events"
    )
    alert_sample_rate: int = Field(
        default=44100,
        description="Sample rate for synthesized alert tones"
    )
    alert_output_dir: str = Field(
        default="data/alerts",
        description="Directory where rendered tones are cached"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Case-insensitive stage names."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("session_backend", mode="before")
    @classmethod
    def validate_session_backend(cls, v: Optional[str]) -> Optional[SessionBackend]:
        """Accept case-insensitive backend names."""
        if v is None or v == "" or isinstance(v, SessionBackend):
            return v or None
        try:
            return SessionBackend(v.lower())
        except ValueError:
            valid = [e.value for e in SessionBackend]
            raise ValueError(f"Invalid session_backend. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """In-memory services only."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def use_real_services(self) -> bool:
        """HTTP backend, websocket channel and shared session storage."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def effective_session_backend(self) -> SessionBackend:
        """Configured session backend, or the default for the environment."""
        if self.session_backend is not None:
            return self.session_backend
        return SessionBackend.MEMORY if self.is_development else SessionBackend.FILE

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 3600

    # ==========================================================================
    # DEPLOYMENT CHECKS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """Environment keys still on local defaults while real services are on."""
        unset = []
        if not self.use_real_services:
            return unset

        if "localhost" in self.api_base_url:
            unset.append("API_BASE_URL")
        if "localhost" in self.realtime_url:
            unset.append("REALTIME_URL")
        if self.effective_session_backend == SessionBackend.MEMORY:
            unset.append("SESSION_BACKEND")
        return unset


@lru_cache()
def get_settings() -> Settings:
    """Settings shared by every surface in the process; tests call cache_clear()."""
    return Settings()


# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Send log records to stdout as "time │ level │ logger │ message".

    Args:
        level: Base level; DEBUG=true in the environment forces DEBUG

    Returns:
        The "ordersync" package logger
    """
    if get_settings().debug:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s │ %(levelname)-8s │ %(name)-32s │ %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # transport libraries log every request and frame at INFO
    for noisy in ("httpx", "httpcore", "websockets", "filelock", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger("ordersync")
