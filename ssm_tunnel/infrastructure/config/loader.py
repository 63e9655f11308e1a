"""
Configuration loading and saving utilities.

Configuration comes from an optional YAML or JSON file, then environment
variables prefixed with ``SSM_TUNNEL_`` override individual values.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

from .models import ApplicationConfig


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on', 'enabled')


# Environment variable suffix -> (section, field, converter); section None is top level
ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    "DEBUG": (None, "debug", parse_bool),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_DIR": ("logging", "log_directory", str),
    "LOG_FILE": ("logging", "file_enabled", parse_bool),
    "CONNECT_TIMEOUT": ("data_channel", "connect_timeout", float),
    "BUFFER_SIZE": ("bridge", "buffer_size", int),
    "SESSION_DURATION": ("session", "session_duration", float),
    "ENDPOINT_URL": ("control_plane", "endpoint_url", str),
    "REQUEST_TIMEOUT": ("control_plane", "request_timeout", float),
}


def _read_yaml(stream: Any) -> Any:
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML: {e}")


def _read_json(stream: Any) -> Any:
    try:
        return json.load(stream)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")


def _write_yaml(data: Dict[str, Any], stream: Any) -> None:
    yaml.safe_dump(data, stream, default_flow_style=False, indent=2)


def _write_json(data: Dict[str, Any], stream: Any) -> None:
    json.dump(data, stream, indent=2)


_READERS = {".yaml": _read_yaml, ".yml": _read_yaml, ".json": _read_json}
_WRITERS = {"yaml": _write_yaml, "json": _write_json}


class ConfigLoader:
    """Builds an ApplicationConfig from a file plus environment overrides."""

    def __init__(self, env_prefix: str = "SSM_TUNNEL_") -> None:
        self._env_prefix = env_prefix

    def load_config(self, config_file: Optional[str] = None) -> ApplicationConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_file: Path to configuration file (optional)

        Returns:
            Loaded and validated configuration

        Raises:
            FileNotFoundError: If config_file does not exist
            ValueError: If the file or an override is invalid
        """
        data = self.read_file(config_file) if config_file else {}
        config = ApplicationConfig.from_dict(self.apply_environment(data))
        config.config_file_path = config_file
        return config

    def save_config(self, config: ApplicationConfig, file_path: str, format: str = "yaml") -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: File format (yaml or json)
        """
        writer = _WRITERS.get(format.lower())
        if writer is None:
            raise ValueError(f"Unsupported format: {format}")

        data = config.to_dict()
        data.pop('config_file_path', None)
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                writer(data, f)
        except OSError as e:
            raise ValueError(f"Error writing {file_path}: {e}")

    def read_file(self, file_path: str) -> Dict[str, Any]:
        """Read a YAML or JSON file into a plain dict, chosen by suffix."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        reader = _READERS.get(path.suffix.lower())
        if reader is None:
            raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = reader(f)
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")
        except ValueError as e:
            raise ValueError(f"{e} in {file_path}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration in {file_path} must be a mapping")
        return data

    def apply_environment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of ``data`` with environment overrides applied.

        Overrides replace single fields; the rest of each section is kept.
        """
        result = dict(data)
        for suffix, (section, field_name, converter) in ENV_OVERRIDES.items():
            env_var = f"{self._env_prefix}{suffix}"
            raw = os.getenv(env_var)
            if raw is None:
                continue

            try:
                value = converter(raw)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {env_var}: {raw} ({e})")

            if section is None:
                result[field_name] = value
            else:
                result[section] = dict(result.get(section) or {}, **{field_name: value})
        return result
