from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_EXTRACTION_PROVIDERS = ("openrouter", "mock")


def _parse_list_value(value: str) -> list[str]:
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
        except Exception:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = ""
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    cors_allow_origins_raw: str = Field(
        default="",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS"),
    )
    cors_allow_methods_raw: str = Field(
        default="GET,POST,OPTIONS",
        validation_alias=AliasChoices("CORS_ALLOW_METHODS"),
    )
    cors_allow_headers_raw: str = Field(
        default="Authorization,Content-Type,Accept,apikey,x-client-info",
        validation_alias=AliasChoices("CORS_ALLOW_HEADERS"),
    )

    enable_ai_extraction: bool = True

    # --- LLM provider ---
    ai_extraction_provider: str = "openrouter"
    openrouter_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "OPEN_ROUTER_API_KEY"),
    )
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "https://app.easyshifthq.com"
    openrouter_title: str = "EasyShiftHQ Document Extraction"

    # --- Fallback orchestrator ---
    ai_provider_timeout_seconds: float = 90.0
    ai_backoff_base_seconds: float = 1.0
    ai_debug_store_raw: bool = False

    # --- Per-pipeline limits ---
    receipt_max_content_chars: int = 100_000
    bank_statement_max_content_chars: int = 500_000
    categorize_max_content_chars: int = 200_000
    receipt_requested_max_tokens: int = 4000
    bank_statement_requested_max_tokens: int = 8000
    categorize_requested_max_tokens: int = 8000
    receipt_download_timeout_seconds: float = 20.0
    bank_statement_download_timeout_seconds: float = 30.0
    document_max_bytes: int = 5 * 1024 * 1024
    persistence_batch_size: int = 50
    bank_statement_insert_flagged_lines: bool = False
    categorize_batch_limit: int = 100
    categorize_example_limit: int = 10

    # --- Document storage ---
    receipt_bucket: str = "receipt-images"
    bank_statement_bucket: str = "bank-statements"
    signed_url_ttl_seconds: int = 600

    @field_validator("ai_extraction_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value):
        if value is None:
            return "openrouter"
        return str(value).strip().lower() or "openrouter"

    @field_validator("persistence_batch_size", "categorize_batch_limit")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def cors_allow_origins(self) -> list[str]:
        return _parse_list_value(self.cors_allow_origins_raw)

    @property
    def cors_allow_methods(self) -> list[str]:
        return _parse_list_value(self.cors_allow_methods_raw)

    @property
    def cors_allow_headers(self) -> list[str]:
        return _parse_list_value(self.cors_allow_headers_raw)


@lru_cache
def get_settings() -> Settings:
    return Settings()
