"""
Configuration schema validation for the swap quote engine.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from config.loader import get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_providers_config(config: dict[str, Any]) -> list[str]:
    """Validate providers.json has required fields."""
    errors = _check_keys(
        config,
        [
            "market_data.base_url",
            "market_data.max_pages",
            "liquidity.venues.icdex.base_url",
            "liquidity.venues.sonic.base_url",
            "order_router.base_url",
        ],
        "providers.json",
    )
    for section in ("market_data", "liquidity"):
        max_pages = config.get(section, {}).get("max_pages")
        if max_pages is not None and (not isinstance(max_pages, int) or max_pages < 1):
            errors.append(f"{section}.max_pages: must be a positive integer")
    for pair, rate in config.get("order_router", {}).get("default_rates", {}).items():
        try:
            if "/" not in pair or Decimal(str(rate)) <= 0:
                errors.append(f"order_router.default_rates.{pair}: invalid entry")
        except InvalidOperation:
            errors.append(f"order_router.default_rates.{pair}: not a number")
    return errors


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has required fields."""
    errors = _check_keys(
        config,
        [
            "cache.ttl_seconds",
            "http.request_timeout_seconds",
        ],
        "timing.json",
    )
    ttl = config.get("cache", {}).get("ttl_seconds")
    if ttl is not None and (not isinstance(ttl, (int, float)) or ttl <= 0):
        errors.append("cache.ttl_seconds: must be a positive number")
    return errors


def validate_execution_config(config: dict[str, Any]) -> list[str]:
    """Validate execution.json has required fields."""
    return _check_keys(
        config,
        [
            "dry_run",
            "quote_ttl_seconds",
            "estimated_time_labels",
        ],
        "execution.json",
    )


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "providers.json": (loader.get_providers_config, validate_providers_config),
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "execution.json": (loader.get_execution_config, validate_execution_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
