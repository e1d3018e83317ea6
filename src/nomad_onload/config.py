"""
Configuration management for the Onload device plugin.

Uses Pydantic Settings for environment variable validation and type safety.
Values can also be supplied from a YAML file; explicit file values win over
the environment.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError


# Go time.ParseDuration units, in seconds
_DURATION_UNITS: Dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5 micro sign
    "μs": 1e-6,  # U+03BC greek mu
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_COMPONENT_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# NIC drivers with native XDP support
DEFAULT_XDP_DRIVERS = [
    "bnxt_en",
    "i40e",
    "ice",
    "igb",
    "igc",
    "ixgbe",
    "mlx4_en",
    "mlx5_core",
    "virtio_net",
]


def parse_duration(value: str) -> float:
    """
    Parse a Go-style duration string into seconds.

    Accepts a sequence of decimal numbers, each with an optional fraction
    and a unit suffix, such as "300ms", "1.5h" or "2h45m". A bare "0" is
    also accepted.

    Args:
        value: Duration string

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the string is not a valid duration
    """
    text = value
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_COMPONENT_RE.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return sign * total


class PluginConfig(BaseSettings):
    """Onload device plugin configuration."""

    need_nic: bool = Field(
        default=False,
        description="Fail fingerprinting if no compatible NICs are found",
    )
    set_preload: bool = Field(
        default=True,
        description="Set the LD_PRELOAD environment variable in the task",
    )
    mount_onload: bool = Field(
        default=False,
        description="Mount Onload binaries and profiles into the task",
    )

    # Probe toggles
    probe_sfc: bool = Field(default=True, description="Probe for Solarflare (SFC) NICs")
    probe_xdp: bool = Field(default=False, description="Probe for AF_XDP capable NICs")
    probe_pps: bool = Field(default=False, description="Probe for PPS timekeeping devices")
    probe_ptp: bool = Field(default=False, description="Probe for PTP timekeeping devices")

    # Pseudo-devices allow non-exclusive scheduling of one physical device
    num_pseudo_nic: int = Field(default=1, ge=1, description="Pseudo-devices per NIC and device type")
    num_pseudo_pps: int = Field(default=1, ge=1, description="Pseudo-devices per PPS device")
    num_pseudo_ptp: int = Field(default=1, ge=1, description="Pseudo-devices per PTP device")

    ignored_interfaces: List[str] = Field(
        default_factory=list,
        description="Interfaces to ignore. Include `none` to suppress that pseudo-device",
    )
    xdp_drivers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_XDP_DRIVERS),
        description="Kernel drivers treated as XDP capable",
    )
    sysfs_path: str = Field(default="/sys", description="Mount point of sysfs on the host")

    # Task / host path pairs
    task_device_path: str = Field(default="/dev", description="Path to place device files in the task")
    host_device_path: str = Field(default="/dev", description="Path to find device files on the host")
    task_onload_lib_path: str = Field(
        default="/usr/lib/x86_64-linux-gnu",
        description="Path to place Onload libraries in the task",
    )
    host_onload_lib_path: str = Field(
        default="/usr/lib/x86_64-linux-gnu",
        description="Path to find Onload libraries on the host",
    )
    task_onload_bin_path: str = Field(default="/usr/bin", description="Path to place Onload binaries in the task")
    host_onload_bin_path: str = Field(default="/usr/bin", description="Path to find Onload binaries on the host")
    task_profile_dir_path: str = Field(
        default="/usr/libexec/onload/profiles",
        description="Path to place the Onload profiles directory in the task",
    )
    host_profile_dir_path: str = Field(
        default="/usr/libexec/onload/profiles",
        description="Path to find the Onload profiles directory on the host",
    )
    task_zf_bin_path: str = Field(default="/usr/bin", description="Path to place TCPDirect binaries in the task")
    host_zf_bin_path: str = Field(default="/usr/bin", description="Path to find TCPDirect binaries on the host")
    task_zf_lib_path: str = Field(
        default="/usr/lib/x86_64-linux-gnu",
        description="Path to place TCPDirect libraries in the task",
    )
    host_zf_lib_path: str = Field(
        default="/usr/lib/x86_64-linux-gnu",
        description="Path to find TCPDirect libraries on the host",
    )

    fingerprint_period: str = Field(
        default="1m",
        description="Period between fingerprint attempts (Go duration syntax)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("fingerprint_period")
    @classmethod
    def validate_fingerprint_period(cls, v: str) -> str:
        """Validate the period parses and is positive."""
        if parse_duration(v) <= 0:
            raise ValueError(f"fingerprint period must be positive, got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    @property
    def fingerprint_period_seconds(self) -> float:
        """Fingerprint period in seconds."""
        return parse_duration(self.fingerprint_period)

    class Config:
        env_prefix = "ONLOAD_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


def load_config(path: Optional[Union[str, Path]] = None) -> PluginConfig:
    """
    Load the plugin configuration.

    Args:
        path: Optional YAML file with option values. Environment
            variables (ONLOAD_*) fill in anything the file leaves unset.

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid
    """
    data: dict = {}
    if path is not None:
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

    try:
        return PluginConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid plugin configuration: {e}") from e


# Global config instance
_config: Optional[PluginConfig] = None


def get_config() -> PluginConfig:
    """
    Get the global configuration instance.

    Lazily loads configuration on first access, reading the YAML file
    named by ONLOAD_CONFIG_FILE if set.

    Returns:
        PluginConfig: The global configuration instance
    """
    global _config
    if _config is None:
        _config = load_config(os.getenv("ONLOAD_CONFIG_FILE"))
    return _config


def reload_config() -> PluginConfig:
    """
    Reload configuration from the environment and config file.

    Returns:
        PluginConfig: The reloaded configuration instance
    """
    global _config
    _config = None
    return get_config()
