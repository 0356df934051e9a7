# config.py
import os
from pathlib import Path

from errors import ConfigError

BACKEND_DIR = Path(__file__).resolve().parent


def _csv_env(name: str, default: str = "") -> list[str]:
    val = os.getenv(name, default)
    # split only if non-empty; strip whitespace
    return [x.strip() for x in val.split(",") if x.strip()] if val else []


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def is_production() -> bool:
    return (os.getenv("ENV") or os.getenv("NODE_ENV") or "").strip().lower() in {"prod", "production"}


class BaseConfig:
    DEBUG = False
    TESTING = False
    IS_PROD = False
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10 MB, same as the JSON body limit

    # Numeric values here are defaults, get_config() applies env overrides

    # Server / instance guard
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = 3001
    PORT_SEARCH_ATTEMPTS = 20
    LOCK_FILE = os.getenv("LOCK_FILE") or str(BACKEND_DIR / ".server.lock")
    SHUTDOWN_TIMEOUT_SECONDS = 10.0

    # Completion service
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
    OPENAI_TIMEOUT = 60.0
    OPENAI_MAX_RETRIES = 2
    ANSWER_TEMPERATURE = 0.7
    ANSWER_MAX_TOKENS = 500

    # Answer cache
    CACHE_TTL_SECONDS = 60 * 60
    CACHE_SWEEP_SECONDS = 30 * 60
    CACHE_RESUME_PREFIX = 500
    CACHE_MAX_ENTRIES = 5000

    # Rate limiting (flask-limiter)
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"
    RATELIMIT_HEADERS_ENABLED = True
    API_RATE_LIMIT = "100 per 15 minutes"

    # CORS
    CORS_ORIGINS = _csv_env("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173") + _csv_env("FRONTEND_URL")

    # Static SPA build, only served in production
    STATIC_DIR = os.getenv("STATIC_DIR") or str(BACKEND_DIR.parent / "src" / "dist")

    FORCE_HTTPS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    IS_PROD = True
    RATELIMIT_ENABLED = True
    API_RATE_LIMIT = "10 per 15 minutes"
    FORCE_HTTPS = os.getenv("FORCE_HTTPS", "").lower() in {"1", "true", "yes"}


# (setting, parser) pairs read from the environment by get_config()
_NUMERIC_ENV = (
    ("PORT", _int_env),
    ("OPENAI_TIMEOUT", _float_env),
    ("OPENAI_MAX_RETRIES", _int_env),
    ("CACHE_TTL_SECONDS", _int_env),
    ("CACHE_SWEEP_SECONDS", _int_env),
    ("CACHE_MAX_ENTRIES", _int_env),
)


def get_config():
    """
    Config class for the current ENV with numeric env overrides applied.

    Raises ConfigError when one of them is malformed or out of range.
    """
    base = ProdConfig if is_production() else DevConfig
    overrides = {name: parse(name, getattr(base, name)) for name, parse in _NUMERIC_ENV}

    if not 0 < overrides["PORT"] <= 65535:
        raise ConfigError(f"PORT must be between 1 and 65535, got {overrides['PORT']}")
    for name in ("CACHE_TTL_SECONDS", "CACHE_MAX_ENTRIES"):
        if overrides[name] <= 0:
            raise ConfigError(f"{name} must be positive, got {overrides[name]}")

    return type(base.__name__, (base,), overrides)


def validate_required_secrets(config=None):
    """Raise ConfigError when the completion API key is missing."""
    config = config or get_config()
    key = getattr(config, "OPENAI_API_KEY", None)
    if not key or not str(key).strip():
        raise ConfigError("OPENAI_API_KEY environment variable is required")
