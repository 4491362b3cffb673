from urllib.parse import urlparse

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _host_from_url(value: str | None) -> str | None:
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    parsed = urlparse(raw)
    scheme = (parsed.scheme or "").lower().strip()
    if scheme not in {"http", "https"}:
        return None
    hostname = (parsed.hostname or "").strip().lower()
    return hostname or None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    supabase_db_url: AnyUrl | None = None
    database_url: AnyUrl | None = None
    media_root: str = "."
    legacy_uploads_dir: str = "uploads"
    storage_proxy_prefix: str = "/api/storage-proxy"
    object_storage_base_url: str | None = Field(
        default="https://object-storage.replit.app",
        validation_alias=AliasChoices("OBJECT_STORAGE_BASE_URL", "OBJECT_STORAGE_URL"),
    )
    object_storage_hosts: list[str] = ["object-storage.replit.app"]
    object_storage_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBJECT_STORAGE_TOKEN", "REPLIT_OBJECT_STORAGE_TOKEN"),
    )
    object_storage_timeout_seconds: float = 30.0
    media_cache_seconds: int = 86400
    media_sync_on_hit: bool = False
    migration_batch_size: int = 50
    mirror_compare: str = "checksum"
    admin_api_token: str | None = None
    cors_allow_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5000",
        "http://127.0.0.1:5000",
    ]
    sentry_dsn: str | None = Field(
        default=None, validation_alias=AliasChoices("SENTRY_DSN", "BACKEND_SENTRY_DSN")
    )
    sentry_traces_sample_rate: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "SENTRY_TRACES_SAMPLE_RATE",
            "BACKEND_SENTRY_TRACES_SAMPLE_RATE",
        ),
    )

    @model_validator(mode="after")
    def _populate_database_url(self):
        if self.database_url is None:
            if self.supabase_db_url is None:
                raise ValueError("DATABASE_URL or SUPABASE_DB_URL is required")
            self.database_url = self.supabase_db_url

        storage_host = _host_from_url(self.object_storage_base_url)
        if storage_host:
            existing = {host.strip().lower() for host in self.object_storage_hosts if host}
            if storage_host not in existing:
                self.object_storage_hosts.append(storage_host)

        if self.mirror_compare not in {"checksum", "mtime"}:
            raise ValueError("MIRROR_COMPARE must be 'checksum' or 'mtime'")
        if self.migration_batch_size < 1:
            raise ValueError("MIGRATION_BATCH_SIZE must be positive")

        self.storage_proxy_prefix = "/" + self.storage_proxy_prefix.strip("/")
        return self

    @field_validator("cors_allow_origins", "object_storage_hosts", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


settings = Settings()
