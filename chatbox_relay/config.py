"""
config.py — relay runtime configuration
=======================================
Pydantic model for every tunable of the relay. Serialises to / from JSON so
the host application can keep it in whatever settings storage it owns.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

DEFAULT_OSC_HOST = "127.0.0.1"
DEFAULT_OSC_PORT = 9000       # VRChat receives here
DEFAULT_LISTEN_PORT = 9001    # VRChat sends avatar parameters here


class RelayConfig(BaseModel):
    """Complete runtime configuration for the relay engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    osc_host: str = Field(default=DEFAULT_OSC_HOST, description="Chatbox destination IP")
    osc_port: int = Field(default=DEFAULT_OSC_PORT, ge=1, le=65535, description="Chatbox destination port")
    listen_port: int = Field(default=DEFAULT_LISTEN_PORT, ge=0, le=65535, description="MuteSelf listen port (0 = any)")

    enabled: bool = Field(default=True, description="Send anything at all")
    realtime_enabled: bool = Field(default=False, description="Forward interim text")
    mic_sync_enabled: bool = Field(default=True, description="Gate sends on VRChat mic mute")

    queue_interval_seconds: float = Field(default=8.0, ge=0.0, description="Pause between queued segments")
    typing_delay_seconds: float = Field(default=0.4, ge=0.0, description="Pause before the typing indicator")
    throttle_interval_ms: int = Field(default=500, gt=0, description="Min spacing between interim sends")
    debounce_delay_ms: int = Field(default=300, gt=0, description="Quiet period before an interim flush")
    max_segment_length: int = Field(default=144, ge=1, description="Chatbox character limit")
    history_size: int = Field(default=100, ge=1, description="Sent-message history entries kept")

    @field_validator("osc_host")
    @classmethod
    def _check_host(cls, value: str) -> str:
        value = (value or "").strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"not an IP address: {value!r}") from None
        return value

    @property
    def osc_target(self) -> tuple:
        return (self.osc_host, self.osc_port)

    # -- Construction ----------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> "RelayConfig":
        """Validate `data`, raising ConfigurationInvalid instead of ValidationError."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationInvalid(str(exc)) from exc

    def merge_patch(self, patch: dict) -> "RelayConfig":
        """Return a new config with `patch` laid over `self`."""
        base = self.model_dump()
        base.update(patch)
        return RelayConfig.from_dict(base)

    # -- Persistence -----------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "RelayConfig":
        """Load config from a JSON file.  Returns defaults if the file is missing or bad."""
        p = Path(path)
        if not p.exists():
            logger.info("event=config_load_defaults path=%s", p)
            return cls()
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            config = cls.from_dict(data)
            logger.info("event=config_loaded path=%s", p)
            return config
        except (OSError, ValueError) as exc:
            logger.warning("event=config_load_error path=%s error=%s using defaults", p, exc)
            return cls()

    def save(self, path: str | Path) -> None:
        p = Path(path)
        p.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.info("event=config_saved path=%s", p)
