from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPLOAD_REFERENCE_PROPERTIES = "_upload_id,_ul_upload_id,_upload_lift_id"

COMMISSION_POLICY_RETAIN = "retain"
COMMISSION_POLICY_VOID = "void"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL")
    database_pool_size: int = Field(10, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(20, alias="DATABASE_MAX_OVERFLOW")

    basic_auth_username: str = Field(..., alias="BASIC_AUTH_USERNAME")
    basic_auth_password: str = Field(..., alias="BASIC_AUTH_PASSWORD")

    cors_origins: str | None = Field(None, alias="CORS_ORIGINS")

    # --- Commerce platform ---
    # App-wide webhook secret. A shop row may override it with its own secret.
    shop_api_secret: str | None = Field(None, alias="SHOP_API_SECRET")
    shop_api_version: str = Field("2025-10", alias="SHOP_API_VERSION")
    shop_admin_url_template: str = Field(
        "https://{shop_domain}/admin/api/{api_version}/graphql.json",
        alias="SHOP_ADMIN_URL_TEMPLATE",
    )
    upload_reference_properties: str = Field(
        DEFAULT_UPLOAD_REFERENCE_PROPERTIES,
        alias="UPLOAD_REFERENCE_PROPERTIES",
    )

    # --- Preflight hand-off ---
    preflight_claim_ttl_seconds: int = Field(900, alias="PREFLIGHT_CLAIM_TTL_SECONDS")
    preflight_claim_batch_size: int = Field(10, alias="PREFLIGHT_CLAIM_BATCH_SIZE")

    # --- Commission ledger ---
    commission_per_order_cents: int = Field(10, alias="COMMISSION_PER_ORDER_CENTS")
    commission_currency: str = Field("USD", alias="COMMISSION_CURRENCY")
    commission_collection_threshold_cents: int = Field(4_999, alias="COMMISSION_COLLECTION_THRESHOLD_CENTS")
    commission_cancellation_policy: str = Field(COMMISSION_POLICY_RETAIN, alias="COMMISSION_CANCELLATION_POLICY")

    # --- Outbound flow triggers ---
    flow_dispatch_enabled: bool = Field(True, alias="FLOW_DISPATCH_ENABLED")
    flow_dispatch_interval_seconds: int = Field(30, alias="FLOW_DISPATCH_INTERVAL_SECONDS")
    flow_batch_size: int = Field(10, alias="FLOW_BATCH_SIZE")
    flow_max_attempts: int = Field(3, alias="FLOW_MAX_ATTEMPTS")
    flow_send_delay_seconds: float = Field(0.1, alias="FLOW_SEND_DELAY_SECONDS")
    flow_retention_days: int = Field(7, alias="FLOW_RETENTION_DAYS")
    flow_cleanup_interval_seconds: int = Field(3600, alias="FLOW_CLEANUP_INTERVAL_SECONDS")
    flow_lock_ttl_seconds: int = Field(300, alias="FLOW_LOCK_TTL_SECONDS")
    flow_request_timeout_seconds: float = Field(15.0, alias="FLOW_REQUEST_TIMEOUT_SECONDS")
    flow_handle_prefix: str = Field("printdesk", alias="FLOW_HANDLE_PREFIX")

    @field_validator("shop_api_secret", mode="before")
    @classmethod
    def _normalize_shop_api_secret(cls, v: object) -> object:
        if v is None:
            return None
        if isinstance(v, str):
            secret = v.strip()
            return secret or None
        return v

    @field_validator("commission_cancellation_policy", mode="before")
    @classmethod
    def _normalize_cancellation_policy(cls, v: object) -> object:
        if isinstance(v, str):
            policy = v.strip().lower() or COMMISSION_POLICY_RETAIN
            if policy not in (COMMISSION_POLICY_RETAIN, COMMISSION_POLICY_VOID):
                raise ValueError(f"COMMISSION_CANCELLATION_POLICY must be '{COMMISSION_POLICY_RETAIN}' or '{COMMISSION_POLICY_VOID}'")
            return policy
        return v

    @property
    def upload_reference_property_names(self) -> tuple[str, ...]:
        """
        Line item property names that may carry an upload id.

        The first entry is the current name; the rest are accepted for carts created by older storefront scripts.
        """
        return tuple(p.strip() for p in self.upload_reference_properties.split(",") if p.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()
