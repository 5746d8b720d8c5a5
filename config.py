"""Configuration management for Token Tracker.

Reads settings from ~/.config/token-tracker/config.json. Secrets (the
credential encryption key, Supabase settings) only come from the environment.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = os.path.expanduser("~/.config/token-tracker")
DEFAULT_CONFIG_PATH = os.path.join(DEFAULT_CONFIG_DIR, "config.json")

ENCRYPTION_KEY_ENV = "TOKEN_TRACKER_ENCRYPTION_KEY"
SUPABASE_URL_ENV = "SUPABASE_URL"
SUPABASE_ANON_KEY_ENV = "SUPABASE_ANON_KEY"

DEFAULT_CONFIG = {
    "providers": {
        "anthropic-admin": {"enabled": True},
        "moonshot": {"enabled": True},
        "openai": {"enabled": True},
        "deepseek": {"enabled": True},
        "minimax": {"enabled": True},
    },
    "rateLimit": {
        "windowSeconds": 60,
        "maxRequests": 60,
        "maxEntries": 10000,
    },
    "upstreamTimeoutSeconds": 15,
    "usageLookbackDays": 7,
    "keyStore": "keyring",
    "server": {"host": "127.0.0.1", "port": 8000},
}

KEY_STORE_BACKENDS = ("keyring", "memory")


def get_config_path() -> str:
    """Return the path to the config file."""
    return os.environ.get("TOKEN_TRACKER_CONFIG_PATH", DEFAULT_CONFIG_PATH)


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load configuration from disk, merging with defaults.

    Handles bad JSON gracefully by falling back to defaults.
    Auto-creates config file with defaults on first run.
    """
    path = config_path or get_config_path()
    config = _deep_copy_dict(DEFAULT_CONFIG)

    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                user_config = json.load(f)
            if isinstance(user_config, dict):
                config = _deep_merge(config, user_config)
            else:
                logger.warning("Config file is not a JSON object, using defaults.")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load config from %s: %s, using defaults.", path, e)
    else:
        try:
            save_config(config, path)
            logger.info("Created default config at %s", path)
        except OSError as e:
            logger.warning("Could not create default config: %s", e)

    return _validate_config(config)


def save_config(config: dict[str, Any], config_path: str | None = None) -> None:
    """Save configuration to disk."""
    path = config_path or get_config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(config, f, indent=2)


def default_config() -> dict[str, Any]:
    """Return a validated copy of the defaults without touching disk."""
    return _validate_config(_deep_copy_dict(DEFAULT_CONFIG))


def _clamp_int(value: Any, default: int, low: int, high: int) -> int:
    try:
        val = int(value)
    except (TypeError, ValueError):
        val = default
    return max(low, min(val, high))


def _validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate and coerce config values to correct types/ranges."""
    rate_limit = config.get("rateLimit")
    if not isinstance(rate_limit, dict):
        rate_limit = _deep_copy_dict(DEFAULT_CONFIG["rateLimit"])
    defaults = DEFAULT_CONFIG["rateLimit"]
    config["rateLimit"] = {
        "windowSeconds": _clamp_int(
            rate_limit.get("windowSeconds"), defaults["windowSeconds"], 1, 3600
        ),
        "maxRequests": _clamp_int(
            rate_limit.get("maxRequests"), defaults["maxRequests"], 1, 100_000
        ),
        "maxEntries": _clamp_int(
            rate_limit.get("maxEntries"), defaults["maxEntries"], 100, 1_000_000
        ),
    }

    config["upstreamTimeoutSeconds"] = _clamp_int(
        config.get("upstreamTimeoutSeconds"), 15, 1, 120
    )
    config["usageLookbackDays"] = _clamp_int(config.get("usageLookbackDays"), 7, 1, 90)

    if config.get("keyStore") not in KEY_STORE_BACKENDS:
        config["keyStore"] = "keyring"

    server = config.get("server")
    if not isinstance(server, dict):
        server = {}
    host = server.get("host")
    config["server"] = {
        "host": host if isinstance(host, str) and host.strip() else "127.0.0.1",
        "port": _clamp_int(server.get("port"), 8000, 1, 65535),
    }

    providers = config.get("providers", {})
    if not isinstance(providers, dict):
        config["providers"] = _deep_copy_dict(DEFAULT_CONFIG["providers"])
    else:
        for pid, pconf in providers.items():
            if not isinstance(pconf, dict):
                providers[pid] = {"enabled": False}
                continue
            pconf["enabled"] = bool(pconf.get("enabled", False))

    return config


def is_provider_enabled(config: dict[str, Any], provider_id: str) -> bool:
    """Check if a provider is enabled."""
    return config["providers"].get(provider_id, {}).get("enabled", False)


def get_enabled_providers(config: dict[str, Any]) -> list[str]:
    """Return enabled provider IDs in config order."""
    return [pid for pid, pconf in config["providers"].items() if pconf.get("enabled", False)]


def get_rate_limit(config: dict[str, Any]) -> tuple[int, int, int]:
    """Return (window seconds, max requests per window, max tracked sources)."""
    rl = config["rateLimit"]
    return rl["windowSeconds"], rl["maxRequests"], rl["maxEntries"]


def get_upstream_timeout(config: dict[str, Any]) -> int:
    """Get timeout for provider API calls in seconds."""
    return config.get("upstreamTimeoutSeconds", 15)


def get_lookback_days(config: dict[str, Any]) -> int:
    """Get the trailing usage window in days."""
    return config.get("usageLookbackDays", 7)


def get_key_store_backend(config: dict[str, Any]) -> str:
    return config.get("keyStore", "keyring")


def get_server_address(config: dict[str, Any]) -> tuple[str, int]:
    server = config.get("server", {})
    return server.get("host", "127.0.0.1"), server.get("port", 8000)


def get_supabase_settings() -> tuple[str, str]:
    """Return (url, anon key) from the environment; empty strings when unset."""
    url = os.environ.get(SUPABASE_URL_ENV, "").strip().rstrip("/")
    key = os.environ.get(SUPABASE_ANON_KEY_ENV, "").strip()
    return url, key


def get_encryption_keys() -> list[str]:
    """Return the configured Fernet keys, primary first.

    The variable may hold a comma-separated list so that ciphertexts written
    under a retired key stay readable during rotation.
    """
    raw = os.environ.get(ENCRYPTION_KEY_ENV, "")
    return [k.strip() for k in raw.split(",") if k.strip()]


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _deep_copy_dict(d: dict) -> dict:
    """Simple deep copy for nested dicts/lists."""
    return json.loads(json.dumps(d))
