from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "cards.json"

DEFAULT_REFERRAL_DOMAINS = (
    "americanexpress.com,chase.com,capitalone.com,citi.com,bankofamerica.com,"
    "wellsfargo.com,discover.com,usbank.com"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # CORS / Frontend
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # Click ingestion
    click_max_body_bytes: int = Field(default=5120, validation_alias="CLICK_MAX_BODY_BYTES")
    click_rate_limit: int = Field(default=30, validation_alias="CLICK_RATE_LIMIT")
    click_rate_window_ms: int = Field(default=60_000, validation_alias="CLICK_RATE_WINDOW_MS")
    # Some deployments prefer an empty 429 body; set to "" for that.
    click_rate_limit_message: str = Field(
        default="Rate limit exceeded", validation_alias="CLICK_RATE_LIMIT_MESSAGE"
    )
    click_ts_future_tolerance_ms: int = Field(
        default=60_000, validation_alias="CLICK_TS_FUTURE_TOLERANCE_MS"
    )

    # Rate-limit store housekeeping
    rate_limit_sweep_seconds: float = Field(default=300.0, validation_alias="RATE_LIMIT_SWEEP_SECONDS")
    rate_limit_max_entries: int = Field(default=10_000, validation_alias="RATE_LIMIT_MAX_ENTRIES")

    # Catalog
    cards_catalog_path: str | None = Field(default=None, validation_alias="CARDS_CATALOG_PATH")
    referral_allowed_domains: str = Field(
        default=DEFAULT_REFERRAL_DOMAINS, validation_alias="REFERRAL_ALLOWED_DOMAINS"
    )

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def catalog_path(self) -> Path:
        if self.cards_catalog_path and self.cards_catalog_path.strip():
            return Path(self.cards_catalog_path.strip())
        return DEFAULT_CATALOG_PATH

    @property
    def allowed_referral_domains(self) -> tuple[str, ...]:
        return tuple(d.strip() for d in (self.referral_allowed_domains or "").split(",") if d.strip())

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "frontend_urls": self.frontend_urls,
            "click": {
                "max_body_bytes": self.click_max_body_bytes,
                "rate_limit": self.click_rate_limit,
                "rate_window_ms": self.click_rate_window_ms,
                "ts_future_tolerance_ms": self.click_ts_future_tolerance_ms,
            },
            "rate_limit_store": {
                "sweep_seconds": self.rate_limit_sweep_seconds,
                "max_entries": self.rate_limit_max_entries,
            },
            "catalog_path": str(self.catalog_path),
            "referral_allowed_domains": list(self.allowed_referral_domains),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# Backwards-compatible module-level singleton.
settings = get_settings()
