"""
Session configuration and its validation rules.

A SessionConfig must pass every check here before the engine makes any
network call.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .exceptions import ValidationError

INSTANCE_ID_PATTERN = re.compile(r"^i-[0-9a-f]{8}([0-9a-f]{9})?$")
REGION_PATTERN = re.compile(r"^[a-z]{2}-[a-z]+-\d$")
PROFILE_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
HOSTNAME_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")

MAX_PROFILE_LENGTH = 64


def is_valid_instance_id(value: Any) -> bool:
    return isinstance(value, str) and bool(INSTANCE_ID_PATTERN.match(value))


def is_valid_region(value: Any) -> bool:
    return isinstance(value, str) and bool(REGION_PATTERN.match(value))


def parse_port(value: Union[int, str, None]) -> Optional[int]:
    """Return the port as an int, or None if it is not within 1-65535."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        port = value
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        return None
    return port if 1 <= port <= 65535 else None


def is_valid_profile(value: Any) -> bool:
    return (
        isinstance(value, str)
        and len(value) <= MAX_PROFILE_LENGTH
        and bool(PROFILE_PATTERN.match(value))
    )


def is_valid_hostname(value: Any) -> bool:
    """Accept DNS names and dotted-quad IPv4 addresses."""
    if not isinstance(value, str):
        return False
    return bool(HOSTNAME_PATTERN.match(value) or IPV4_PATTERN.match(value))


@dataclass(frozen=True)
class SessionConfig:
    """
    Immutable settings for one forwarding session.

    Ports may be given as ints or digit strings; ``validate`` normalises
    them.
    """

    target: str
    host: str
    port_number: Union[int, str]
    local_port_number: Union[int, str]
    region: str
    profile: str
    session_duration: Optional[float] = None

    def validation_errors(self) -> List[str]:
        """Collect every validation failure, in a fixed order."""
        errors: List[str] = []

        if not is_valid_instance_id(self.target):
            errors.append(f"Invalid instance ID format: {self.target}")
        if not is_valid_region(self.region):
            errors.append(f"Invalid region format: {self.region}")
        if parse_port(self.port_number) is None:
            errors.append(f"Invalid remote port: {self.port_number}")
        if parse_port(self.local_port_number) is None:
            errors.append(f"Invalid local port: {self.local_port_number}")
        if not is_valid_profile(self.profile):
            errors.append(f"Invalid profile name: {self.profile}")
        if not is_valid_hostname(self.host):
            errors.append(f"Invalid hostname: {self.host}")
        if self.session_duration is not None:
            if isinstance(self.session_duration, bool) or not isinstance(self.session_duration, (int, float)) \
                    or self.session_duration <= 0:
                errors.append(f"Invalid session duration: {self.session_duration}")

        return errors

    def validate(self) -> 'SessionConfig':
        """
        Validate all fields.

        Returns:
            A copy with ports normalised to ints

        Raises:
            ValidationError: If any field is malformed
        """
        errors = self.validation_errors()
        if errors:
            raise ValidationError(errors)

        return SessionConfig(
            target=self.target,
            host=self.host,
            port_number=parse_port(self.port_number),  # type: ignore[arg-type]
            local_port_number=parse_port(self.local_port_number),  # type: ignore[arg-type]
            region=self.region,
            profile=self.profile,
            session_duration=self.session_duration,
        )

    def to_parameters(self) -> Dict[str, List[str]]:
        """Document parameters for the control plane StartSession call."""
        return {
            "host": [self.host],
            "portNumber": [str(self.port_number)],
            "localPortNumber": [str(self.local_port_number)],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionConfig':
        """Build from a plain mapping using either snake or camel case keys."""
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        return cls(
            target=pick("target", default=""),
            host=pick("host", default=""),
            port_number=pick("port_number", "portNumber", default=""),
            local_port_number=pick("local_port_number", "localPortNumber", default=""),
            region=pick("region", default=""),
            profile=pick("profile", default=""),
            session_duration=pick("session_duration", "sessionDuration"),
        )
