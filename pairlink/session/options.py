# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
import logging

from ..config import Config


@dataclass
class SessionOptions:
    """Strongly typed timing and sizing options for a pairing session."""

    buffer_capacity: int = 10
    negotiation_delay_ms: int = 1500
    response_timeout_ms: int = 10000
    telemetry_frequency_ms: int = 5000
    recent_photos: int = 5

    def __post_init__(self):
        if self.buffer_capacity < 1:
            raise ValueError(f"buffer_capacity must be positive, got {self.buffer_capacity}")
        if self.telemetry_frequency_ms <= 0:
            raise ValueError(f"telemetry_frequency_ms must be positive, got {self.telemetry_frequency_ms}")
        if self.negotiation_delay_ms < 0 or self.response_timeout_ms <= 0:
            raise ValueError("negotiation delays must be non-negative and the response timeout positive")

    @classmethod
    def from_config(cls, config: Config) -> 'SessionOptions':
        """Create SessionOptions from the loaded configuration."""
        return cls(
            buffer_capacity=int(config.get("session.buffer_capacity")),
            negotiation_delay_ms=int(config.get("permissions.negotiation_delay_ms")),
            response_timeout_ms=int(config.get("permissions.response_timeout_ms")),
            telemetry_frequency_ms=int(config.get("telemetry.frequency_ms")),
            recent_photos=int(config.get("telemetry.recent_photos")),
        )

    def log_info(self, session_info: str) -> None:
        """Log session configuration info."""
        logging.getLogger('session').info(
            f"session {session_info} buffer={self.buffer_capacity} "
            f"negotiation_delay={self.negotiation_delay_ms}ms response_timeout={self.response_timeout_ms}ms "
            f"telemetry={self.telemetry_frequency_ms}ms photos={self.recent_photos}"
        )
