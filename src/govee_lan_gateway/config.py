"""Configuration loading for the Govee LAN gateway."""

from __future__ import annotations

import argparse
import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence


CONFIG_ENV_PREFIX = "GOVEE_GATEWAY_"
CONFIG_VERSION = 1
MIN_SUPPORTED_CONFIG_VERSION = 1

# Unprefixed variables understood for compatibility with older deployments.
_ENV_ALIASES = {
    "GOVEE_API_KEY": "govee_api_key",
    "PORT": "api_port",
}

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    govee_api_key: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_docs: bool = True
    cors_allow_origins: Sequence[str] = ("*",)
    lan_enabled: bool = True
    cloud_base_url: str = "https://openapi.api.govee.com"
    cloud_timeout: float = 10.0
    discovery_multicast_address: str = "239.255.255.250"
    discovery_multicast_port: int = 4001
    discovery_reply_port: int = 4002
    discovery_timeout: float = 2.0
    control_discovery_timeout: float = 2.0
    device_control_port: int = 4003
    device_status_timeout: float = 2.0
    log_format: str = "plain"
    log_level: str = "INFO"
    discovery_log_level: Optional[str] = None
    lan_log_level: Optional[str] = None
    cloud_log_level: Optional[str] = None
    api_log_level: Optional[str] = None
    config_version: int = CONFIG_VERSION

    def __post_init__(self) -> None:
        _validate_config(self)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a sanitized mapping suitable for structured logging."""

        return {
            "config_version": self.config_version,
            "govee_api_key": "***REDACTED***" if self.govee_api_key else None,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "api_docs": self.api_docs,
            "cors_allow_origins": list(self.cors_allow_origins),
            "lan_enabled": self.lan_enabled,
            "cloud_base_url": self.cloud_base_url,
            "cloud_timeout": self.cloud_timeout,
            "discovery_multicast_address": self.discovery_multicast_address,
            "discovery_multicast_port": self.discovery_multicast_port,
            "discovery_reply_port": self.discovery_reply_port,
            "discovery_timeout": self.discovery_timeout,
            "control_discovery_timeout": self.control_discovery_timeout,
            "device_control_port": self.device_control_port,
            "device_status_timeout": self.device_status_timeout,
            "log_format": self.log_format,
            "log_level": self.log_level,
            "discovery_log_level": self.discovery_log_level,
            "lan_log_level": self.lan_log_level,
            "cloud_log_level": self.cloud_log_level,
            "api_log_level": self.api_log_level,
        }

    @classmethod
    def from_sources(cls, cli_args: Optional[Iterable[str]] = None) -> "Config":
        """Load configuration from defaults, file, env, and CLI (in that order)."""

        args = _parse_cli(cli_args)
        file_config = _load_file_config(
            args.config
            or _coerce_path(os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG"))
            or None
        )
        env_config = _load_env_config(CONFIG_ENV_PREFIX)
        cli_config = _cli_overrides(args)

        merged: Dict[str, Any] = {}
        merged.update(file_config)
        merged.update(env_config)
        merged.update(cli_config)
        # Validated once, on the merged result.
        return _apply_mapping(cls, merged)


def _validate_config(config: Config) -> None:
    _validate_version(config.config_version)
    _validate_range("api_port", config.api_port, 1, 65535)
    _validate_range("cloud_timeout", config.cloud_timeout, 0.1, 300.0)
    _validate_range("discovery_multicast_port", config.discovery_multicast_port, 1, 65535)
    # 0 lets the OS pick a reply port; only useful for tests.
    _validate_range("discovery_reply_port", config.discovery_reply_port, 0, 65535)
    _validate_range("discovery_timeout", config.discovery_timeout, 0.0, 120.0)
    _validate_range("control_discovery_timeout", config.control_discovery_timeout, 0.0, 120.0)
    _validate_range("device_control_port", config.device_control_port, 1, 65535)
    _validate_range("device_status_timeout", config.device_status_timeout, 0.05, 120.0)
    if config.log_format not in {"plain", "json"}:
        raise ValueError(f"log_format must be 'plain' or 'json'; got {config.log_format}.")
    for field_name, value in (
        ("log_level", config.log_level),
        ("discovery_log_level", config.discovery_log_level),
        ("lan_log_level", config.lan_log_level),
        ("cloud_log_level", config.cloud_log_level),
        ("api_log_level", config.api_log_level),
    ):
        _validate_log_level_value(value, field_name)
    if not config.lan_enabled and not config.govee_api_key:
        raise ValueError(
            "Govee API key is required when LAN mode is disabled. Provide it via "
            "--api-key or the GOVEE_API_KEY environment variable."
        )


def _validate_version(version: int) -> None:
    if version < MIN_SUPPORTED_CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is too old; minimum supported is {MIN_SUPPORTED_CONFIG_VERSION}."
        )
    if version > CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION}); please upgrade the gateway."
        )


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _validate_log_level_value(value: Optional[str], name: str) -> None:
    if value is None:
        return
    allowed = set(_LOG_LEVELS)
    if value.upper() not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}; got {value}.")


def _parse_cli(cli_args: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="govee-lan-gateway",
        description="Run the Govee LAN/cloud control gateway.",
    )
    parser.add_argument("--config", type=Path, help="Path to TOML config file.")
    parser.add_argument(
        "--api-key",
        dest="govee_api_key",
        type=str,
        help="Govee cloud API key (required when LAN mode is disabled).",
    )
    parser.add_argument(
        "--port",
        dest="api_port",
        type=int,
        help="TCP port for the HTTP API server.",
    )
    parser.add_argument("--host", dest="api_host", type=str, help="Address the HTTP API binds to.")
    parser.add_argument(
        "--lan",
        dest="lan_enabled",
        action="store_const",
        const=True,
        help="Enable LAN discovery and control (enabled by default).",
    )
    parser.add_argument(
        "--no-lan",
        dest="lan_enabled",
        action="store_const",
        const=False,
        help="Disable LAN discovery and always use the cloud API.",
    )
    parser.add_argument(
        "--no-api-docs",
        dest="api_docs",
        action="store_const",
        const=False,
        help="Disable interactive API docs.",
    )
    parser.add_argument(
        "--cors-allow-origin",
        action="append",
        dest="cors_allow_origins",
        help="Allowed CORS origin; may be repeated.",
    )
    parser.add_argument("--cloud-base-url", type=str, help="Base URL of the Govee cloud API.")
    parser.add_argument("--cloud-timeout", type=float, help="Seconds to wait for cloud API calls.")
    parser.add_argument(
        "--discovery-multicast-address",
        type=str,
        help="Multicast address used for discovery scans.",
    )
    parser.add_argument(
        "--discovery-multicast-port",
        type=int,
        help="UDP port devices listen on for scan requests.",
    )
    parser.add_argument(
        "--discovery-reply-port",
        type=int,
        help="Local UDP port scan responses arrive on.",
    )
    parser.add_argument(
        "--discovery-timeout",
        type=float,
        help="Seconds to collect scan responses for the LAN listing endpoint.",
    )
    parser.add_argument(
        "--control-discovery-timeout",
        type=float,
        help="Seconds to collect scan responses before a LAN control attempt.",
    )
    parser.add_argument(
        "--device-control-port",
        type=int,
        help="UDP port devices accept control commands on.",
    )
    parser.add_argument(
        "--device-status-timeout",
        type=float,
        help="Seconds to wait for a device status reply.",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        help="Structured logging format.",
    )
    parser.add_argument("--log-level", choices=_LOG_LEVELS, help="Log verbosity level.")
    parser.add_argument("--discovery-log-level", choices=_LOG_LEVELS, help="Log verbosity for discovery.")
    parser.add_argument("--lan-log-level", choices=_LOG_LEVELS, help="Log verbosity for LAN control.")
    parser.add_argument("--cloud-log-level", choices=_LOG_LEVELS, help="Log verbosity for the cloud client.")
    parser.add_argument("--api-log-level", choices=_LOG_LEVELS, help="Log verbosity for the API server.")
    parser.add_argument(
        "--config-version",
        type=int,
        help="Version of the configuration schema being supplied.",
    )
    return parser.parse_args(args=cli_args)


def _load_file_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        parsed = tomllib.load(f)
    if not isinstance(parsed, Mapping):
        raise ValueError("Configuration file must contain a TOML table.")
    return {k.replace("-", "_"): v for k, v in parsed.items()}


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for env_key, field in _ENV_ALIASES.items():
        if env_key in os.environ:
            mapping[field] = os.environ[env_key]
    for field in Config.__dataclass_fields__:
        env_key = f"{prefix}{field}".upper()
        if env_key in os.environ:
            mapping[field] = os.environ[env_key]
    return mapping


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {k: v for k, v in vars(args).items() if k != "config" and v is not None}


def _apply_mapping(cls: type, overrides: Mapping[str, Any]) -> Config:
    data: MutableMapping[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in Config.__dataclass_fields__:
            raise ValueError(f"Unknown configuration key: {key}")
        if key in {
            "api_port",
            "discovery_multicast_port",
            "discovery_reply_port",
            "device_control_port",
            "config_version",
        }:
            data[key] = int(value)
        elif key in {
            "cloud_timeout",
            "discovery_timeout",
            "control_discovery_timeout",
            "device_status_timeout",
        }:
            data[key] = float(value)
        elif key in {"lan_enabled", "api_docs"}:
            data[key] = _coerce_bool(value)
        elif key == "log_format":
            data[key] = str(value).lower()
        elif key in {
            "log_level",
            "discovery_log_level",
            "lan_log_level",
            "cloud_log_level",
            "api_log_level",
        }:
            data[key] = str(value).upper()
        elif key == "cors_allow_origins":
            data[key] = _coerce_origins(value)
        elif key == "cloud_base_url":
            data[key] = str(value).rstrip("/")
        else:
            data[key] = value
    return cls(**data)


def _coerce_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    return value if isinstance(value, Path) else Path(str(value)).expanduser()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_origins(value: Any) -> Sequence[str]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, Iterable):
        return tuple(str(item) for item in value)
    raise ValueError("cors_allow_origins must be a string or a list of strings")


def load_config(cli_args: Optional[Iterable[str]] = None) -> Config:
    """Public helper used by the entrypoint."""

    try:
        return Config.from_sources(cli_args)
    except Exception as exc:  # pragma: no cover - defensive logging path
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        raise
