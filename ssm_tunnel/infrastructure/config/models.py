"""
Configuration models and data structures.

This module defines the engine configuration, providing defaults and
validation for every tunable value.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from ...core.interfaces.control_plane import PORT_FORWARDING_DOCUMENT

LOOPBACK_HOST = "127.0.0.1"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = False


@dataclass
class DataChannelConfig:
    """Data channel transport configuration."""
    connect_timeout: float = 10.0
    close_timeout: float = 5.0
    max_frame_size: int = 2**20  # 1MB
    ping_interval: Optional[float] = 20.0


@dataclass
class BridgeConfig:
    """Local listener configuration."""
    bind_host: str = LOOPBACK_HOST
    buffer_size: int = 65536


@dataclass
class SessionDefaults:
    """Defaults applied to every session."""
    session_duration: float = 600.0
    document_name: str = PORT_FORWARDING_DOCUMENT


@dataclass
class ControlPlaneConfig:
    """Control plane client configuration."""
    endpoint_url: Optional[str] = None
    request_timeout: float = 30.0

    def resolve_endpoint(self, region: str) -> str:
        """Endpoint for ``region`` unless one is configured explicitly."""
        if self.endpoint_url:
            return self.endpoint_url
        return f"https://ssm.{region}.amazonaws.com/"


@dataclass
class ApplicationConfig:
    """Main engine configuration."""

    name: str = "ssm-tunnel"
    version: str = "0.1.0"
    debug: bool = False

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    data_channel: DataChannelConfig = field(default_factory=DataChannelConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    session: SessionDefaults = field(default_factory=SessionDefaults)
    control_plane: ControlPlaneConfig = field(default_factory=ControlPlaneConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_bind_host()
        self._validate_timeouts()
        self._validate_sizes()

    def _validate_bind_host(self) -> None:
        if self.bridge.bind_host != LOOPBACK_HOST:
            raise ValueError(
                f"Bridge must bind to {LOOPBACK_HOST}, got {self.bridge.bind_host}")

    def _validate_timeouts(self) -> None:
        """Validate timeout values."""
        timeouts = [
            ("Connect timeout", self.data_channel.connect_timeout),
            ("Close timeout", self.data_channel.close_timeout),
            ("Session duration", self.session.session_duration),
            ("Control plane request timeout", self.control_plane.request_timeout),
        ]

        for name, timeout in timeouts:
            if timeout <= 0:
                raise ValueError(f"{name} must be positive, got {timeout}")

    def _validate_sizes(self) -> None:
        if self.bridge.buffer_size <= 0:
            raise ValueError(
                f"Buffer size must be positive, got {self.bridge.buffer_size}")
        if self.data_channel.max_frame_size <= 0:
            raise ValueError(
                f"Max frame size must be positive, got {self.data_channel.max_frame_size}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        return cls(
            name=data.get('name', 'ssm-tunnel'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            logging=LoggingConfig(**data.get('logging', {})),
            data_channel=DataChannelConfig(**data.get('data_channel', {})),
            bridge=BridgeConfig(**data.get('bridge', {})),
            session=SessionDefaults(**data.get('session', {})),
            control_plane=ControlPlaneConfig(**data.get('control_plane', {})),
            config_file_path=data.get('config_file_path'),
        )
