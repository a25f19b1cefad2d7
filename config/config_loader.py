"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this, never hardcoded values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_section(name: str) -> Dict[str, Any]:
    """
    Returns a top-level config block by name.

    Raises:
        KeyError: If the section is not in the config.
    """
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No config section '{name}'. "
            f"Available: {list(config.keys())}"
        )
    return config[name]


def get_subscription_defaults() -> Dict[str, Any]:
    """Returns the subscription_defaults block."""
    return get_section("subscription_defaults")


def get_payment_analysis_config() -> Dict[str, Any]:
    """Returns the payment_analysis block."""
    return get_section("payment_analysis")


def get_validity_rules() -> Dict[str, Any]:
    """Returns the validity_rules block."""
    return get_section("validity_rules")


def get_renewal_monitoring_config() -> Dict[str, Any]:
    """Returns the renewal_monitoring block."""
    return get_section("renewal_monitoring")


def get_categories() -> list[str]:
    """Returns the closed list of subscription categories."""
    return list(get_subscription_defaults()["categories"])


def get_supported_currencies() -> list[str]:
    """Returns the closed set of supported currency codes."""
    return list(get_subscription_defaults()["supported_currencies"])


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
