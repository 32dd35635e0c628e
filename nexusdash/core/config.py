from functools import lru_cache
from typing import Literal

from fastapi import Depends
from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing_extensions import Annotated

RuntimeEnvironment = Literal["development", "test", "production"]


class Settings(BaseSettings):
    app_env: str = "development"
    service_name: str = "nexusdash"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    database_url: str = "sqlite+aiosqlite:///./nexusdash.db"
    database_echo: bool = False

    # Cache; an empty redis_dsn keeps the cache process-local.
    redis_dsn: str | None = None
    l1_maxsize: int = 2048
    l1_ttl_seconds: int = 60  # default L1 TTL
    l2_ttl_seconds: int = 300  # default Redis TTL
    cache_namespace: str = "nexusdash:"
    redis_pool_size: int = 5

    # Attachment storage
    storage_provider: Literal["local", "s3", "r2"] = "local"
    storage_local_root: str = "storage/uploads"
    storage_signed_url_ttl_seconds: int = 300
    s3_bucket: str | None = None
    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    r2_account_id: str | None = None

    legacy_actor_user_id: str | None = None

    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str | None = None
    google_calendar_id: str = "primary"

    @field_validator("*", mode="before")
    @classmethod
    def blank_strings_are_unset(cls, value, info):
        if isinstance(value, str) and not value.strip():
            default = cls.model_fields[info.field_name].default
            return default
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def runtime_environment(self) -> RuntimeEnvironment:
        env = self.app_env.strip().lower()
        if env in ("production", "test"):
            return env
        return "development"

    @property
    def is_production(self) -> bool:
        return self.runtime_environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
