"""
Configuration for the LiveTrack text feed.

Provides settings for the inbox watcher, polling, and template output.
Values come from built-in defaults, environment variables and an optional
YAML config file which is deep-merged over the defaults.
"""
import copy
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_OUTPUT_TEMPLATES: Dict[str, Any] = {
    "gps": "${position.lat},${position.lon}",
    "dateTime": "${format_date(dateTime)}",
    "altitudeInFeet": "${round(altitude / METERS_PER_FOOT)}",
    "altitudeInMetres": "${round(altitude)}",
    "speedInMph": "${round(speed * MPS_TO_MPH)}",
    "speedInKph": "${round(speed * MPS_TO_KPH)}",
    "fitnessPointData": {
        "distanceInMiles": "${round(distanceMeters / METERS_PER_MILE * 10) / 10}",
        "distanceInKilometers": "${round(distanceMeters / 1000 * 10) / 10}",
        "durationInHhmm": "${format_duration(durationSecs)}",
        "durationInHhmmss": "${format_duration(durationSecs, True)}",
        "paceInMinPerMile": "${decimal_to_time_string(pace(speedMetersPerSec, 'mile'))}",
        "paceInMinPerKm": "${decimal_to_time_string(pace(speedMetersPerSec, 'km'))}",
    },
}


class MailSettings(BaseSettings):
    """IMAP inbox configuration used for session discovery."""

    model_config = SettingsConfigDict(
        env_prefix="LIVETRACK_MAIL_",
        env_file=".env",
        extra="ignore",
    )

    username: str = Field(default="", description="IMAP login")
    password: str = Field(default="", description="IMAP password or app password")
    host: str = Field(default="imap.gmail.com", description="IMAP server host")
    port: int = Field(default=993, description="IMAP server port")
    tls: bool = Field(default=True, description="Connect over TLS")
    secure: bool = Field(default=True, description="Verify the server certificate")
    label: str = Field(default="INBOX", description="Mailbox to search")
    mark_seen: bool = Field(default=False, description="Flag fetched messages as seen")
    check_interval: float = Field(default=30.0, description="Seconds between inbox checks")
    sender_filter: str = Field(
        default="noreply@garmin.com",
        description="Only messages from this sender are considered",
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class PollingSettings(BaseSettings):
    """Trackpoint polling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIVETRACK_POLLING_",
        env_file=".env",
        extra="ignore",
    )

    provider_url: str = Field(
        default="https://livetrack.garmin.com",
        description="Base URL of the live-tracking provider",
    )
    refresh_time_in_milliseconds: int = Field(
        default=4000, gt=0, description="Poll period (milliseconds)"
    )
    request_timeout: Optional[float] = Field(
        default=None, description="HTTP timeout in seconds, None for the transport default"
    )
    skip_overlapping_ticks: bool = Field(
        default=True, description="Skip a tick while the previous one is still running"
    )

    @property
    def interval(self) -> float:
        """Poll period in seconds."""
        return self.refresh_time_in_milliseconds / 1000.0


class OutputSettings(BaseSettings):
    """Rendered output configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIVETRACK_OUTPUT_",
        env_file=".env",
        extra="ignore",
    )

    output_folder: Path = Field(default=Path("./stats"), description="Output directory")
    output_templates: Dict[str, Any] = Field(
        default_factory=lambda: copy.deepcopy(DEFAULT_OUTPUT_TEMPLATES),
        description="Nested template specification",
    )
    raw_filename: str = Field(default="trackpoints.json", description="Raw payload file name")
    file_extension: str = Field(default=".txt", description="Extension for rendered files")

    @field_validator("output_templates")
    @classmethod
    def _check_template_shape(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _validate_template_tree(value, "outputTemplates")
        return value


class LiveTrackSettings(BaseSettings):
    """Main configuration for the LiveTrack text feed."""

    model_config = SettingsConfigDict(
        env_prefix="LIVETRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="LiveTrack OBS")
    log_level: str = Field(default="INFO")
    config_file: Path = Field(default=Path("config.yaml"))

    mail: MailSettings = Field(default_factory=MailSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)


def _validate_template_tree(node: Any, path: str) -> None:
    if not isinstance(node, Mapping):
        raise ValueError(f"{path} must be a mapping")
    for key, value in node.items():
        if not isinstance(key, str):
            raise ValueError(f"{path} has a non-string key: {key!r}")
        child = f"{path}.{key}"
        if isinstance(value, Mapping):
            _validate_template_tree(value, child)
        elif not isinstance(value, str):
            raise ValueError(
                f"{child} must be a template string or a mapping, "
                f"got {type(value).__name__}"
            )


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge ``override`` over ``base``.

    Mappings present on both sides are merged key by key; for any other
    value the override wins. Neither input is modified.

    Args:
        base: Default values.
        override: User supplied values.

    Returns:
        A new merged dictionary.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Keys allowed at the top level of a flat config file and their section.
_FLAT_KEYS = {
    "username": "mail",
    "password": "mail",
    "host": "mail",
    "port": "mail",
    "tls": "mail",
    "secure": "mail",
    "label": "mail",
    "mark_seen": "mail",
    "check_interval": "mail",
    "sender_filter": "mail",
    "provider_url": "polling",
    "refresh_time_in_milliseconds": "polling",
    "request_timeout": "polling",
    "skip_overlapping_ticks": "polling",
    "output_folder": "output",
    "output_templates": "output",
    "raw_filename": "output",
    "file_extension": "output",
}

_SECTIONS = ("mail", "polling", "output")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def normalize_config(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert a user config mapping into the nested settings layout.

    Accepts both the flat layout (``outputFolder: ./stats``) and the
    sectioned one (``output: {output_folder: ./stats}``), with camelCase or
    snake_case option names. Template keys are left untouched since they
    name output files.
    """
    result: Dict[str, Any] = {}

    for raw_key, value in data.items():
        key = _snake(str(raw_key))
        if key in _SECTIONS:
            if not isinstance(value, Mapping):
                raise ConfigurationError(f"Section '{raw_key}' must be a mapping")
            section = result.setdefault(key, {})
            for sub_key, sub_value in value.items():
                section[_snake(str(sub_key))] = sub_value
        elif key in _FLAT_KEYS:
            result.setdefault(_FLAT_KEYS[key], {})[key] = value
        elif key in ("app_name", "log_level"):
            result[key] = value
        else:
            logger.warning(f"Ignoring unknown config option '{raw_key}'")

    return result


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Read a YAML config file.

    Returns an empty mapping when the file does not exist.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    if not path.exists():
        logger.warning(
            f"Config file {path} not found, using default values. "
            "Create one from config.sample.yaml to override them"
        )
        return {}

    logger.info(f"Loading config from {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {path}", details={"error": str(e)}
        ) from e

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return normalize_config(data)


def load_settings(config_file: Optional[Path] = None) -> LiveTrackSettings:
    """
    Build settings from defaults, environment and the YAML config file.

    Args:
        config_file: Path to the YAML file. Defaults to ``config_file``
            from the environment-derived settings.

    Raises:
        ConfigurationError: If the merged configuration is invalid.
    """
    defaults = LiveTrackSettings()
    path = Path(config_file) if config_file is not None else defaults.config_file
    overrides = load_config_file(path)

    merged = deep_merge(defaults.model_dump(), overrides)
    merged["config_file"] = path

    try:
        return LiveTrackSettings(**merged)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid configuration", details={"errors": e.errors(include_url=False)}
        ) from e


@lru_cache()
def get_settings() -> LiveTrackSettings:
    """
    Get cached settings.

    Uses LRU cache so the config file is read once per process.
    """
    return load_settings()
