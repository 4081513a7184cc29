"""Tests for YAML settings loading."""
import pytest
from pydantic import ValidationError

from marketchat.config import AppSettings, get_config, load_settings, reset_config


def test_defaults_when_files_are_missing(tmp_path):
    settings = load_settings(tmp_path / "nope.yaml", tmp_path / "nope-secrets.yaml")

    assert settings == AppSettings()
    assert settings.server.port == 5000
    assert settings.database.path == "marketchat.duckdb"
    assert settings.messaging.max_content_length == 5000
    assert settings.secrets.jwt.algorithm == "HS256"


def test_env_overrides_point_at_test_files(test_config):
    assert test_config.database.path == ":memory:"
    assert test_config.messaging.max_content_length == 200
    assert test_config.logging.level == "debug"
    assert test_config.secrets.jwt.secret_key == "marketchat-test-secret-0123456789abcdef"


def test_get_config_is_cached_until_reset():
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first


def test_secrets_file_is_merged(tmp_path):
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text(
        "server:\n  port: 8080\n  allowed_origins: ['https://market.example']\n"
    )
    secrets_file = tmp_path / "secrets.yaml"
    secrets_file.write_text(
        "jwt:\n  secret_key: s3cret\n  issuer: auth.market\n  leeway_seconds: 30\n"
    )

    settings = load_settings(settings_file, secrets_file)

    assert settings.server.port == 8080
    assert settings.server.allowed_origins == ["https://market.example"]
    assert settings.secrets.jwt.secret_key == "s3cret"
    assert settings.secrets.jwt.issuer == "auth.market"
    assert settings.secrets.jwt.leeway_seconds == 30


def test_log_level_is_normalised(tmp_path):
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text("logging:\n  level: WARNING\n")
    assert load_settings(settings_file, tmp_path / "none.yaml").logging.level == "warning"


@pytest.mark.parametrize("yaml_text", [
    "logging:\n  level: loud\n",
    "messaging:\n  max_content_length: -1\n",
    "messaging:\n  search_result_limit: 0\n",
])
def test_invalid_settings_are_rejected(tmp_path, yaml_text):
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text(yaml_text)
    with pytest.raises(ValidationError):
        load_settings(settings_file, tmp_path / "none.yaml")
