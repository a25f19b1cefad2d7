"""
taxonomy.py
------------
Category and currency lookup layer.

Loads the closed category list and currency set from config.yaml and
builds a case-insensitive index. Category updates happen in config.yaml;
no code changes required.
"""

from typing import Any, Dict, Optional

from config.config_loader import get_subscription_defaults


class CategoryLookup:
    """
    Fast lookup from a free-form category label to its canonical spelling.

    Built once at init from the config. Thread-safe for reads.
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_subscription_defaults()
        self.default_category = self.config["default_category"]
        self._index: Dict[str, str] = {}
        self._currencies = {c.upper() for c in self.config["supported_currencies"]}
        self._load_categories()

    def _load_categories(self) -> None:
        """Builds the lookup index from config."""
        for label in self.config["categories"]:
            self._index[self._key(label)] = label

    @staticmethod
    def _key(label: str) -> str:
        return " ".join(label.lower().split())

    def lookup(self, label: str | None) -> Optional[str]:
        """
        Returns the canonical category for `label`, or None if unknown.
        """
        if not label:
            return None
        return self._index.get(self._key(label))

    def normalize(self, label: str | None) -> str:
        """Canonical category, falling back to the default category."""
        return self.lookup(label) or self.default_category

    def is_known_category(self, label: str | None) -> bool:
        return self.lookup(label) is not None

    def is_supported_currency(self, currency: str | None) -> bool:
        return bool(currency) and currency.upper() in self._currencies

    def __repr__(self) -> str:
        return f"CategoryLookup(categories={len(self._index)}, currencies={sorted(self._currencies)})"
