"""Tests for YAML configuration handling."""

from __future__ import annotations

import pytest
import yaml

from ibeacon_locator.config_manager import ConfigManager, LocatorSettings
from ibeacon_locator.errors import InvalidConfiguration


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "config.yaml"


class TestConfigManager:
    def test_missing_file_is_created_with_defaults(self, config_path):
        manager = ConfigManager(str(config_path))

        assert config_path.exists()
        saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        assert saved["smoothing"]["alpha"] == 0.35
        assert saved["aggregator"]["debounce_ms"] == 500
        assert manager.get_locator_settings() == LocatorSettings()

    def test_partial_file_is_merged_with_defaults(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(
            "rssi_model:\n  path_loss_exponent: 2.7\nscan:\n  uuids:\n    - E2C56DB5-DFFB-48D2-B060-D0F5A71096E0\n",
            encoding="utf-8",
        )

        settings = ConfigManager(str(config_path)).get_locator_settings()

        assert settings.path_loss_exponent == 2.7
        assert settings.tx_power == -59
        assert settings.ema_alpha == 0.35
        assert settings.uuids == ("E2C56DB5-DFFB-48D2-B060-D0F5A71096E0",)

    def test_env_overrides_defaults(self, config_path, monkeypatch):
        monkeypatch.setenv("IBEACON_EMA_ALPHA", "0.5")
        monkeypatch.setenv("IBEACON_DEBOUNCE_MS", "250")
        monkeypatch.setenv("IBEACON_SCAN_UUIDS", "a, b")

        manager = ConfigManager(str(config_path))

        assert manager.get_smoothing_config()["alpha"] == 0.5
        assert manager.get_aggregator_config()["debounce_ms"] == 250.0
        assert manager.get_scan_config()["uuids"] == ["a", "b"]

    @pytest.mark.parametrize(
        "section,key,value",
        [
            ("smoothing", "alpha", 0.0),
            ("smoothing", "alpha", 1.2),
            ("rssi_model", "path_loss_exponent", -1.0),
            ("aggregator", "debounce_ms", 0),
            ("solver", "quality_high", 5.0),
            ("rssi_model", "tx_power", "loud"),
        ],
    )
    def test_invalid_values(self, config_path, section, key, value):
        manager = ConfigManager(str(config_path))
        manager.config[section][key] = value
        with pytest.raises(InvalidConfiguration):
            manager.get_locator_settings()

    def test_setters_persist(self, config_path):
        manager = ConfigManager(str(config_path))
        manager.set_smoothing_config(0.2)
        manager.set_rssi_model_config(-62, 2.4)
        manager.set_solver_config(0.5, 3.0)

        settings = ConfigManager(str(config_path)).get_locator_settings()

        assert settings.ema_alpha == 0.2
        assert settings.tx_power == -62
        assert settings.path_loss_exponent == 2.4
        assert settings.quality_high == 0.5
        assert settings.quality_medium == 3.0

    def test_broken_yaml_falls_back_to_defaults(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("smoothing: [unclosed", encoding="utf-8")

        manager = ConfigManager(str(config_path))

        assert manager.get_locator_settings() == LocatorSettings()


class TestLocatorSettings:
    def test_defaults(self):
        settings = LocatorSettings()
        assert settings.tx_power == -59
        assert settings.path_loss_exponent == 2.0
        assert settings.ema_alpha == 0.35
        assert settings.debounce_ms == 500.0
        assert (settings.quality_high, settings.quality_medium) == (1.0, 4.0)

    def test_tx_power_range(self):
        with pytest.raises(InvalidConfiguration):
            LocatorSettings(tx_power=-200)
