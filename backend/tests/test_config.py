"""
Tests for config class selection and environment overrides.
"""
import pytest

from config import DevConfig, ProdConfig, get_config, validate_required_secrets
from errors import ConfigError

NUMERIC_VARS = (
    "PORT", "OPENAI_TIMEOUT", "OPENAI_MAX_RETRIES",
    "CACHE_TTL_SECONDS", "CACHE_SWEEP_SECONDS", "CACHE_MAX_ENTRIES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ENV", "NODE_ENV", *NUMERIC_VARS):
        monkeypatch.delenv(name, raising=False)


class TestGetConfig:

    def test_development_by_default(self):
        config = get_config()
        assert issubclass(config, DevConfig)
        assert config.IS_PROD is False
        assert config.PORT == 3001

    @pytest.mark.parametrize("var,value", [("ENV", "production"), ("ENV", "prod"), ("NODE_ENV", "production")])
    def test_production(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        config = get_config()
        assert issubclass(config, ProdConfig)
        assert config.RATELIMIT_ENABLED is True

    def test_numeric_overrides(self, monkeypatch):
        monkeypatch.setenv("PORT", "4000")
        monkeypatch.setenv("OPENAI_TIMEOUT", "12.5")
        monkeypatch.setenv("CACHE_TTL_SECONDS", "60")

        config = get_config()

        assert config.PORT == 4000
        assert config.OPENAI_TIMEOUT == 12.5
        assert config.CACHE_TTL_SECONDS == 60

    def test_overrides_do_not_leak_into_base_classes(self, monkeypatch):
        monkeypatch.setenv("PORT", "4000")
        get_config()
        assert DevConfig.PORT == 3001

    @pytest.mark.parametrize("var,value", [
        ("PORT", "abc"),
        ("PORT", "0"),
        ("PORT", "70000"),
        ("OPENAI_TIMEOUT", "soon"),
        ("CACHE_TTL_SECONDS", "0"),
        ("CACHE_MAX_ENTRIES", "-5"),
    ])
    def test_bad_values_raise_config_error(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        with pytest.raises(ConfigError):
            get_config()


class TestValidateRequiredSecrets:

    def test_missing_key(self):
        config = type("NoKey", (DevConfig,), {"OPENAI_API_KEY": "  "})
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            validate_required_secrets(config)

    def test_key_present(self):
        validate_required_secrets(type("WithKey", (DevConfig,), {"OPENAI_API_KEY": "sk-test"}))
