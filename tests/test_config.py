"""
Tests for plugin configuration.
"""

import pytest
from pydantic import ValidationError

from nomad_onload import config as config_module
from nomad_onload.config import PluginConfig, load_config, parse_duration, reload_config
from nomad_onload.errors import ConfigurationError


class TestParseDuration:
    """Go-style duration parsing."""

    @pytest.mark.parametrize(
        "text,seconds",
        [
            ("1m", 60.0),
            ("30s", 30.0),
            ("300ms", 0.3),
            ("1h30m", 5400.0),
            ("1.5s", 1.5),
            ("2m0.5s", 120.5),
            ("0", 0.0),
            ("-1s", -1.0),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    @pytest.mark.parametrize("text", ["", "1", "abc", "1x", "m", "1m ", "--1s"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestPluginConfig:
    """PluginConfig defaults and validation."""

    def test_defaults(self):
        cfg = PluginConfig()
        assert cfg.probe_sfc is True
        assert cfg.probe_pps is False
        assert cfg.set_preload is True
        assert cfg.mount_onload is False
        assert cfg.num_pseudo_nic == 1
        assert cfg.task_device_path == "/dev"
        assert cfg.fingerprint_period == "1m"
        assert cfg.fingerprint_period_seconds == 60.0
        assert "ice" in cfg.xdp_drivers

    def test_malformed_period_rejected(self):
        with pytest.raises(ValidationError):
            PluginConfig(fingerprint_period="every minute")

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValidationError):
            PluginConfig(fingerprint_period="0s")

    def test_pseudo_count_must_be_positive(self):
        with pytest.raises(ValidationError):
            PluginConfig(num_pseudo_nic=0)

    def test_log_level_normalized(self):
        assert PluginConfig(log_level="debug").log_level == "DEBUG"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ONLOAD_NUM_PSEUDO_NIC", "4")
        monkeypatch.setenv("ONLOAD_PROBE_PTP", "true")
        cfg = PluginConfig()
        assert cfg.num_pseudo_nic == 4
        assert cfg.probe_ptp is True


class TestLoadConfig:
    """Loading configuration from YAML files."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "onload.yaml"
        path.write_text(
            "ignored_interfaces:\n"
            "  - none\n"
            "  - eth2\n"
            "num_pseudo_nic: 3\n"
            "fingerprint_period: 30s\n"
        )
        cfg = load_config(path)
        assert cfg.ignored_interfaces == ["none", "eth2"]
        assert cfg.num_pseudo_nic == 3
        assert cfg.fingerprint_period_seconds == 30.0

    def test_file_wins_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ONLOAD_NUM_PSEUDO_NIC", "4")
        path = tmp_path / "onload.yaml"
        path.write_text("num_pseudo_nic: 2\n")
        assert load_config(path).num_pseudo_nic == 2

    def test_no_file_uses_defaults(self):
        assert load_config().fingerprint_period == "1m"

    def test_malformed_period_is_configuration_error(self, tmp_path):
        path = tmp_path / "onload.yaml"
        path.write_text("fingerprint_period: soon\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_option_rejected(self, tmp_path):
        path = tmp_path / "onload.yaml"
        path.write_text("probe_everything: true\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "onload.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_reload_config_reads_config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "onload.yaml"
        path.write_text("mount_onload: true\n")
        monkeypatch.setenv("ONLOAD_CONFIG_FILE", str(path))
        monkeypatch.setattr(config_module, "_config", None)

        cfg = reload_config()

        assert cfg.mount_onload is True
        assert config_module.get_config() is cfg
