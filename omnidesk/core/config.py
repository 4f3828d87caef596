from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from omnidesk.domain.enums import Channel

DEFAULT_VERIFY_TOKEN = "local-dev-verify-token-change-me"
DEFAULT_AI_FALLBACK_REPLY = (
    "I'm sorry, I'm having trouble responding right now. "
    "A member of our team will get back to you shortly."
)


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "omnidesk"
    postgres_user: str = "omnidesk"
    postgres_password: str = "omnidesk"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False
    storage_backend: str = "postgres"

    log_level: str = "INFO"
    log_json: bool = False

    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost,testserver"
    force_https: bool = False

    webhook_verify_token: str = DEFAULT_VERIFY_TOKEN
    instagram_verify_token: str | None = None
    facebook_verify_token: str | None = None
    whatsapp_verify_token: str | None = None
    meta_app_secret: str | None = None

    graph_api_base_url: str = "https://graph.facebook.com"
    instagram_graph_base_url: str = "https://graph.instagram.com"
    graph_api_version: str = "v19.0"
    instagram_access_token: str | None = None
    instagram_account_id: str | None = None
    facebook_page_access_token: str | None = None
    whatsapp_access_token: str | None = None
    whatsapp_phone_number_id: str | None = None

    ai_service_url: str | None = None
    ai_service_api_key: str | None = None
    ai_reply_timeout_seconds: float = 30.0
    ai_fallback_reply: str = DEFAULT_AI_FALLBACK_REPLY

    delivery_retry_attempts: int = 2
    delivery_retry_backoff_raw: str = "0.5,2"
    delivery_timeout_seconds: float = 10.0

    session_idle_timeout_minutes: int = 60
    session_registry_max_size: int = 10_000

    sla_sweep_enabled: bool = True
    sla_sweep_interval_seconds: int = 300
    sla_matrix: dict[str, dict[str, int]] | None = None
    ticket_trigger_keywords: dict[str, list[str]] | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def uses_memory_storage(self) -> bool:
        return self.storage_backend.strip().lower() == "memory"

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def trusted_hosts(self) -> list[str]:
        return [
            host.strip() for host in self.trusted_hosts_raw.split(",") if host.strip()
        ]

    @property
    def delivery_retry_backoff(self) -> list[float]:
        return [
            float(value.strip())
            for value in self.delivery_retry_backoff_raw.split(",")
            if value.strip()
        ]

    def verify_token_for(self, channel: Channel) -> str:
        per_channel = {
            Channel.INSTAGRAM: self.instagram_verify_token,
            Channel.FACEBOOK: self.facebook_verify_token,
            Channel.WHATSAPP: self.whatsapp_verify_token,
        }.get(channel)
        return per_channel or self.webhook_verify_token

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return

        for channel in (Channel.INSTAGRAM, Channel.FACEBOOK, Channel.WHATSAPP):
            if self.verify_token_for(channel) == DEFAULT_VERIFY_TOKEN:
                raise ValueError(
                    f"Webhook verify token for {channel.value} must be overridden in production."
                )
        if not self.meta_app_secret:
            raise ValueError("META_APP_SECRET must be set in production.")
        if self.uses_memory_storage:
            raise ValueError("STORAGE_BACKEND=memory is not allowed in production.")
        if not self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")
        if not self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if "*" in self.trusted_hosts:
            raise ValueError("Wildcard trusted host is not allowed in production.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
