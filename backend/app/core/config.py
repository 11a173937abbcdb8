from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    attachments_bucket: str = "confirmation-attachments"
    attachment_signed_url_ttl_seconds: int = 3600
    max_attachment_bytes: int = 15 * 1024 * 1024

    base_currency: str = "GEL"
    allowed_currencies_raw: str = Field(
        default="GEL,USD",
        validation_alias=AliasChoices("ALLOWED_CURRENCIES", "allowed_currencies_raw"),
    )
    default_expense_category: str = "hotel"

    enable_recurring_jobs: bool = False
    salary_reconcile_interval_seconds: int = 3600

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "PATCH",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_list(cls, value):
        return _parse_list_value(value)

    @field_validator("base_currency", mode="after")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return (value or "GEL").strip().upper()

    @property
    def allowed_currencies(self) -> list[str]:
        currencies = [item.upper() for item in _parse_list_value(self.allowed_currencies_raw)]
        if self.base_currency not in currencies:
            currencies.insert(0, self.base_currency)
        return currencies

@lru_cache

def get_settings() -> Settings:
    return Settings()
