"""Runtime settings for the forwarding supervisor."""

from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .exceptions import ConfigError

# Defaults
DEFAULT_CONFIG_PATH: Final = Path("/etc/socat/forwards.conf")
DEFAULT_GRACE_PERIOD: Final = 5.0  # Seconds
DEFAULT_CONNECT_TIMEOUT: Final = 5.0  # Seconds
DEFAULT_BUFFER_SIZE: Final = 65536  # Bytes
DEFAULT_BACKLOG: Final = 128


@dataclass(frozen=True)
class Settings:
    """Settings shared by the supervisor and its workers.

    Attributes:
        config_path: Path of the forwarding rules file
        grace_period: Seconds a stopping worker waits for relays to drain
        connect_timeout: Seconds allowed for connecting to a target
        buffer_size: Maximum bytes read from a socket in one call
        backlog: Listen queue length of every worker socket
    """

    config_path: Path = DEFAULT_CONFIG_PATH
    grace_period: float = DEFAULT_GRACE_PERIOD
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    backlog: int = DEFAULT_BACKLOG

    def validate(self) -> "Settings":
        """Check value ranges, returning self so calls can be chained."""
        if self.grace_period < 0:
            raise ConfigError(f"grace period must not be negative, got {self.grace_period}")
        if self.connect_timeout <= 0:
            raise ConfigError(f"connect timeout must be positive, got {self.connect_timeout}")
        if self.buffer_size <= 0:
            raise ConfigError(f"buffer size must be positive, got {self.buffer_size}")
        if self.backlog <= 0:
            raise ConfigError(f"backlog must be positive, got {self.backlog}")
        return self
