from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field

from shared.db import get_conn_str


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class IdentitySettings(BaseModel):
    """Runtime configuration for the identity engine."""

    database_url: str = Field(default_factory=get_conn_str)
    service_name: str = Field(default_factory=lambda: os.getenv("SERVICE_NAME", "identity-engine"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    extra_placeholder_names: list[str] = Field(
        default_factory=lambda: _split_csv(os.getenv("IDENTITY_EXTRA_PLACEHOLDERS", ""))
    )
    default_sku_unit: str = Field(default_factory=lambda: os.getenv("DEFAULT_SKU_UNIT", "件"))
    card_suffix_min_digits: int = Field(
        default_factory=lambda: int(os.getenv("CARD_SUFFIX_MIN_DIGITS", "4"))
    )


@lru_cache(maxsize=1)
def get_settings() -> IdentitySettings:
    return IdentitySettings()


__all__ = ["IdentitySettings", "get_settings"]
