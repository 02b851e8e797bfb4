from __future__ import annotations

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")


class Settings(BaseSettings):
    SHOPIFY_SHOP_DOMAIN: str
    SHOPIFY_ADMIN_ACCESS_TOKEN: str
    SHOPIFY_ADMIN_API_VERSION: str = "2025-01"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 20.0

    CONTENTFLOW_DB_URL: str = "sqlite:///./contentflow.db"
    RUN_TTL_SECONDS: int = Field(default=86400, ge=1)

    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    GENERATION_MAX_CONCURRENCY: int = Field(default=8, ge=1)
    GENERATION_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)

    @field_validator("SHOPIFY_SHOP_DOMAIN")
    @classmethod
    def validate_shop_domain(cls, value: str) -> str:
        normalized = value.strip().lower()
        normalized = normalized.removeprefix("https://").removeprefix("http://").rstrip("/")
        if not _SHOP_DOMAIN_RE.fullmatch(normalized):
            raise ValueError("SHOPIFY_SHOP_DOMAIN must be a valid *.myshopify.com domain")
        return normalized

    @field_validator("SHOPIFY_ADMIN_ACCESS_TOKEN")
    @classmethod
    def validate_access_token(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise ValueError("SHOPIFY_ADMIN_ACCESS_TOKEN must not be empty")
        return token

    @property
    def admin_graphql_url(self) -> str:
        return f"https://{self.SHOPIFY_SHOP_DOMAIN}/admin/api/{self.SHOPIFY_ADMIN_API_VERSION}/graphql.json"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
