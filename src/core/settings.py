from __future__ import annotations

import os
from decimal import Decimal

from pydantic import BaseModel, Field

from market_data.gateway import GatewaySettings


class WithholdingPolicy(BaseModel):
    """Flat dividend withholding applied to provider-synced dividends in the listed currencies."""

    rate: Decimal = Decimal("0.30")
    currencies: frozenset[str] = frozenset({"USD"})

    def applies_to(self, currency: str | None) -> bool:
        return (currency or "").upper() in self.currencies


class TrackerSettings(BaseModel):
    database_url: str = "sqlite:///./data/tracker.db"
    price_cache_ttl_s: float = Field(default=15 * 60, gt=0)
    provider_max_retries: int = Field(default=3, ge=1)
    provider_retry_delay_s: float = Field(default=1.0, ge=0)
    dashboard_cache_ttl_s: float = Field(default=15 * 60, gt=0)
    withholding: WithholdingPolicy = Field(default_factory=WithholdingPolicy)
    log_level: str = "INFO"

    def gateway_settings(self) -> GatewaySettings:
        return GatewaySettings(
            cache_ttl_s=self.price_cache_ttl_s,
            max_retries=self.provider_max_retries,
            retry_delay_s=self.provider_retry_delay_s,
        )

    @classmethod
    def from_env(cls) -> "TrackerSettings":
        env = os.environ
        data: dict = {}
        if env.get("DATABASE_URL"):
            data["database_url"] = env["DATABASE_URL"]
        if env.get("PRICE_CACHE_TTL_S"):
            data["price_cache_ttl_s"] = env["PRICE_CACHE_TTL_S"]
        if env.get("PROVIDER_MAX_RETRIES"):
            data["provider_max_retries"] = env["PROVIDER_MAX_RETRIES"]
        if env.get("PROVIDER_RETRY_DELAY_S"):
            data["provider_retry_delay_s"] = env["PROVIDER_RETRY_DELAY_S"]
        if env.get("DASHBOARD_CACHE_TTL_S"):
            data["dashboard_cache_ttl_s"] = env["DASHBOARD_CACHE_TTL_S"]
        if env.get("LOG_LEVEL"):
            data["log_level"] = env["LOG_LEVEL"].strip().upper()

        withholding: dict = {}
        if env.get("DIVIDEND_WITHHOLDING_RATE"):
            withholding["rate"] = env["DIVIDEND_WITHHOLDING_RATE"]
        if "DIVIDEND_WITHHOLDING_CURRENCIES" in env:
            raw = env["DIVIDEND_WITHHOLDING_CURRENCIES"]
            withholding["currencies"] = frozenset(c.strip().upper() for c in raw.split(",") if c.strip())
        if withholding:
            data["withholding"] = withholding
        return cls.model_validate(data)
