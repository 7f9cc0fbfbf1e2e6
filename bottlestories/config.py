from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    api_base_url: str = "http://localhost:5000/api"
    request_timeout: float = 10.0
    storage_path: str = "bottlestories.db"
    free_shipping_threshold: float = 3000.0
    shipping_fee: float = 0.0
    recheck_stock_at_checkout: bool = True
    autosave_debounce: float = 0.0

    class Config:
        env_prefix = "BOTTLESTORIES_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file


def load_settings() -> Settings:
    """Provide a reusable settings singleton."""

    return Settings()


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Generic YAML loader with sensible defaults."""

    with Path(path).open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_pricing_config(path: str | Path = "config/pricing.yaml") -> dict[str, Any]:
    """Load the shipping pricing section from YAML.

    Expected shape::

        shipping:
          free_threshold: 3000
          fee: 0
    """

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Pricing config not found at {cfg_path}")

    data = load_yaml(cfg_path)
    shipping = data.get("shipping")
    if not isinstance(shipping, dict):
        raise ValueError("pricing.yaml must contain a 'shipping' mapping.")

    for field in ("free_threshold", "fee"):
        value = shipping.get(field, 0)
        if not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"shipping.{field} must be a non-negative number, got {value!r}")

    return data


settings = load_settings()
