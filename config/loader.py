"""
Configuration loader for the swap quote engine.

Provides centralized configuration management with .env overrides.
Every JSON file lives next to this module in config/.

Usage:
    from config.loader import get_config

    config = get_config()
    providers = config.get_providers_config()
    ttl = config.get_timing_config().get("cache", {}).get("ttl_seconds", 30)
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the swap quote engine.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (logging folders, service name)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_providers_config(self) -> Dict[str, Any]:
        """Load provider endpoints, page caps and rate limits."""
        return _load_json(self._config_dir / "providers.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load cache TTLs and HTTP timeouts, with .env override for the cache TTL."""
        timing = _load_json(self._config_dir / "timing.json")
        ttl_override = get_env_var("SWAP_ENGINE_CACHE_TTL_SECONDS", None, float)
        if ttl_override is not None:
            timing = {**timing, "cache": {**timing.get("cache", {}), "ttl_seconds": ttl_override}}
        return timing

    @lru_cache(maxsize=1)
    def get_execution_config(self) -> Dict[str, Any]:
        """Load quote/execution policy (dry run, quote TTL, fees, time labels)."""
        execution = _load_json(self._config_dir / "execution.json")
        dry_run = get_env_var("SWAP_ENGINE_DRY_RUN", None, bool)
        if dry_run is not None:
            execution = {**execution, "dry_run": dry_run}
        return execution

    def get_provider_config(self, provider: str) -> Dict[str, Any]:
        """Return one provider section of providers.json (empty dict if absent)."""
        return self.get_providers_config().get(provider, {})

    # ------------------------------------------------------------------
    # Arbitrary config file loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Load an arbitrary JSON config file from config/ directory."""
        return _load_json(self._config_dir / f"{config_name}.json")

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
