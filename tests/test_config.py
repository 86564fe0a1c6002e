"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for service configs.
"""

import os
import tempfile

import pytest
import yaml

from avatar_studio.config.loader import (
    GeneratorBackend,
    GeneratorConfig,
    ServiceConfig,
    TimeoutConfig,
    UsageLogRetryConfig,
    default_service_config,
    load_service_config
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a full configuration loads correctly."""
        config_data = {
            "database": {"path": "/var/lib/avatar-studio/studio.db"},
            "generator": {
                "image_backend": "openai",
                "video_backend": "disabled",
                "image_model": "dall-e-2",
                "image_size": "512x512",
                "image_quality": "hd"
            },
            "timeouts": {"image": 15, "video": 90.5},
            "usage_log_retry": {"max_retries": 3, "base_delay": 1, "max_delay": 8},
            "payments": {"credits_per_usd": 20}
        }

        config = load_service_config(self._write_config(config_data))

        assert config.database.path == "/var/lib/avatar-studio/studio.db"
        assert config.generator.image_backend == GeneratorBackend.OPENAI
        assert config.generator.video_backend == GeneratorBackend.DISABLED
        assert config.generator.image_model == "dall-e-2"
        assert config.generator.image_size == "512x512"
        assert config.generator.image_quality == "hd"
        assert config.timeouts.image == 15.0
        assert config.timeouts.video == 90.5
        assert config.usage_log_retry.max_retries == 3
        assert config.usage_log_retry.max_delay == 8.0
        assert config.payments.credits_per_usd == 20

    def test_partial_config_uses_defaults(self):
        """Test that omitted sections fall back to defaults."""
        config = load_service_config(self._write_config({"timeouts": {"video": 60}}))

        assert config.timeouts.video == 60.0
        assert config.timeouts.image == TimeoutConfig().image
        assert config.generator == GeneratorConfig()
        assert config.usage_log_retry == UsageLogRetryConfig()

    def test_empty_file_uses_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        assert load_service_config(config_path) == default_service_config()

    def test_backend_is_case_insensitive(self):
        config = load_service_config(self._write_config({"generator": {"image_backend": "OpenAI"}}))

        assert config.generator.image_backend == GeneratorBackend.OPENAI

    def test_missing_file_fails(self):
        """Test that missing config file fails."""
        with pytest.raises(FileNotFoundError, match="Service config file not found"):
            load_service_config(os.path.join(self.temp_dir, "nonexistent.yaml"))

    def test_invalid_yaml_fails(self):
        """Test that invalid YAML fails."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("timeouts: [image: 1\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_service_config(config_path)

    def test_non_mapping_config_fails(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            load_service_config(self._write_config(["database"]))

    def test_unknown_top_level_keys_fail(self):
        """Test that unknown top-level keys fail."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_service_config(self._write_config({"billing": {}}))

    def test_unknown_section_keys_fail(self):
        with pytest.raises(ValueError, match="Unknown keys in timeouts"):
            load_service_config(self._write_config({"timeouts": {"audio": 5}}))

    def test_section_must_be_dictionary(self):
        with pytest.raises(ValueError, match="'database' must be a dictionary"):
            load_service_config(self._write_config({"database": "studio.db"}))

    def test_invalid_backend_fails(self):
        with pytest.raises(ValueError, match="must be one of"):
            load_service_config(self._write_config({"generator": {"image_backend": "midjourney"}}))

    def test_openai_video_backend_fails(self):
        """Test that video cannot be routed to the image-only backend."""
        with pytest.raises(ValueError, match="does not support video"):
            load_service_config(self._write_config({"generator": {"video_backend": "openai"}}))

    def test_non_numeric_timeout_fails(self):
        with pytest.raises(ValueError, match="must be a number"):
            load_service_config(self._write_config({"timeouts": {"image": "fast"}}))

    def test_non_positive_timeout_fails(self):
        with pytest.raises(ValueError, match="image timeout must be > 0"):
            load_service_config(self._write_config({"timeouts": {"image": 0}}))

    def test_non_integer_retries_fail(self):
        with pytest.raises(ValueError, match="must be an integer"):
            load_service_config(self._write_config({"usage_log_retry": {"max_retries": 2.5}}))

    def test_retry_delays_validated(self):
        with pytest.raises(ValueError, match="max_delay must be >= base_delay"):
            load_service_config(self._write_config(
                {"usage_log_retry": {"base_delay": 10, "max_delay": 1}}
            ))

    def test_credits_per_usd_must_be_positive(self):
        with pytest.raises(ValueError, match="credits_per_usd must be > 0"):
            load_service_config(self._write_config({"payments": {"credits_per_usd": 0}}))


class TestConfigObjects:
    """Test configuration dataclasses directly."""

    def test_defaults(self):
        config = ServiceConfig()

        assert config.database.path == "avatar_studio.db"
        assert config.generator.image_backend == GeneratorBackend.PLACEHOLDER
        assert config.generator.video_backend == GeneratorBackend.PLACEHOLDER
        assert config.timeouts.image == 30.0
        assert config.timeouts.video == 120.0
        assert config.payments.credits_per_usd == 10

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError, match="max_retries must be >= 0"):
            UsageLogRetryConfig(max_retries=-1)
