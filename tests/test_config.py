import os
from pathlib import Path

import pytest

from govee_lan_gateway.config import (
    CONFIG_ENV_PREFIX,
    CONFIG_VERSION,
    MIN_SUPPORTED_CONFIG_VERSION,
    Config,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith(CONFIG_ENV_PREFIX):
            monkeypatch.delenv(key)
    monkeypatch.delenv("GOVEE_API_KEY", raising=False)
    monkeypatch.delenv("PORT", raising=False)


def test_default_config_passes_validation() -> None:
    config = Config()
    assert config.config_version == CONFIG_VERSION
    assert config.lan_enabled is True
    assert config.api_port == 8080
    assert config.discovery_multicast_address == "239.255.255.250"
    assert (config.discovery_multicast_port, config.discovery_reply_port, config.device_control_port) == (
        4001,
        4002,
        4003,
    )


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("api_port", 0, "api_port"),
        ("discovery_timeout", -1.0, "discovery_timeout"),
        ("device_status_timeout", 0.0, "device_status_timeout"),
        ("device_control_port", 70000, "device_control_port"),
        ("log_format", "xml", "log_format"),
        ("log_level", "CHATTY", "log_level"),
    ],
)
def test_bounds_enforced(field: str, value: object, error: str) -> None:
    with pytest.raises(ValueError, match=error):
        Config(**{field: value})


def test_future_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="newer than supported"):
        Config(config_version=CONFIG_VERSION + 1)


def test_ancient_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="too old"):
        Config(config_version=MIN_SUPPORTED_CONFIG_VERSION - 1)


def test_cloud_only_mode_requires_api_key() -> None:
    with pytest.raises(ValueError, match="API key is required"):
        Config(lan_enabled=False)
    assert Config(lan_enabled=False, govee_api_key="key").lan_enabled is False


def test_logging_dict_masks_secrets() -> None:
    logged = Config(govee_api_key="secret-key").logging_dict()
    assert logged["govee_api_key"] == "***REDACTED***"
    assert "secret-key" not in repr(logged)
    assert Config().logging_dict()["govee_api_key"] is None


def test_cli_flags_override_defaults() -> None:
    config = Config.from_sources(
        ["--api-key", "abc", "--port", "9000", "--no-lan", "--cors-allow-origin", "http://a", "--log-format", "json"]
    )
    assert config.govee_api_key == "abc"
    assert config.api_port == 9000
    assert config.lan_enabled is False
    assert tuple(config.cors_allow_origins) == ("http://a",)
    assert config.log_format == "json"


def test_unprefixed_environment_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOVEE_API_KEY", "from-env")
    monkeypatch.setenv("PORT", "8181")
    config = Config.from_sources([])
    assert config.govee_api_key == "from-env"
    assert config.api_port == 8181


def test_prefixed_environment_values_are_coerced(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(f"{CONFIG_ENV_PREFIX}LAN_ENABLED", "false")
    monkeypatch.setenv(f"{CONFIG_ENV_PREFIX}GOVEE_API_KEY", "prefixed")
    monkeypatch.setenv(f"{CONFIG_ENV_PREFIX}DISCOVERY_TIMEOUT", "0.5")
    monkeypatch.setenv(f"{CONFIG_ENV_PREFIX}CORS_ALLOW_ORIGINS", "http://a, http://b")
    config = Config.from_sources([])
    assert config.lan_enabled is False
    assert config.govee_api_key == "prefixed"
    assert config.discovery_timeout == 0.5
    assert tuple(config.cors_allow_origins) == ("http://a", "http://b")


def test_precedence_file_then_env_then_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "gateway.toml"
    config_file.write_text(
        'api_port = 7000\ncloud_base_url = "http://mock.local/"\ndevice-status-timeout = 1.5\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("PORT", "7100")
    config = Config.from_sources(["--config", str(config_file)])
    assert config.api_port == 7100
    assert config.cloud_base_url == "http://mock.local"
    assert config.device_status_timeout == 1.5

    config = Config.from_sources(["--config", str(config_file), "--port", "7200"])
    assert config.api_port == 7200


def test_unknown_file_key_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "gateway.toml"
    config_file.write_text("mqtt_port = 1883\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown configuration key"):
        Config.from_sources(["--config", str(config_file)])


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        Config.from_sources(["--config", str(tmp_path / "absent.toml")])
