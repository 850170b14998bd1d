from __future__ import annotations

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./lease_billing.db"
    engine_version: str = "2026-10-18.v1"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Billing defaults ----
    billing_max_workers: int = 4
    billing_default_tax_rate: Decimal = Decimal("0")  # percent; used when a taxable charge type has no rate
    billing_default_invoice_prefix: str = "INV"
    billing_default_payment_term_days: int = 0
    billing_credit_note_prefix: str = "CN"
    billing_run_error_digest_limit: int = 10
    # bill escalated rent on the fly; when off only materialized terms change rent
    billing_apply_escalation: bool = True

    # Days before the next period starts at which the scheduled run is expected.
    billing_days_before_period_start: int = 5

    # ---- Celery ----
    # POST /invoice-runs drives the batch in-process unless this is on
    billing_runs_via_celery: bool = False
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None

    def model_post_init(self, __context) -> None:
        if int(self.billing_max_workers) < 1:
            raise ValueError("billing_max_workers must be >= 1")
        if Decimal(self.billing_default_tax_rate) < 0:
            raise ValueError("billing_default_tax_rate cannot be negative")

        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        # Hard fail: wildcard CORS in prod
        if is_prod:
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")
            if self.database_url.startswith("sqlite"):
                raise ValueError("sqlite database_url is not allowed in prod")


settings = Settings()
