import json

from gputune.config import AppConfig, ConfigManager


class TestConfigManager:

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.json")

        assert manager.config == AppConfig()
        assert manager.config.monitoring_interval_ms == 1000

    def test_corrupt_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        assert ConfigManager(path).load() == AppConfig()

    def test_non_object_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps([1, 2, 3]))

        assert ConfigManager(path).load() == AppConfig()

    def test_load_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "monitoring_interval_ms": 500,
            "history_length": 60,
            "warning_temp_celsius": 65,
        }))

        loaded = ConfigManager(path).load()

        assert loaded.monitoring_interval_ms == 500
        assert loaded.history_length == 60
        assert loaded.warning_temp_celsius == 65
        assert loaded.critical_temp_celsius == 80

    def test_partial_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"log_level": "DEBUG"}))

        config = ConfigManager(path).load()

        assert config.log_level == "DEBUG"
        assert config.fallback_device_name == "System Default GPU"

    def test_config_is_cached(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"history_length": 10}))
        manager = ConfigManager(path)

        first = manager.config
        path.write_text(json.dumps({"history_length": 20}))

        assert manager.config is first
        assert manager.config.history_length == 10

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"default_fan_curve": {"30": 90}, "history_length": 5}))

        config = ConfigManager(path).load()

        assert config.history_length == 5
        assert not hasattr(config, "default_fan_curve")
