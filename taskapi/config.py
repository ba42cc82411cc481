from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "task-management-api"
    app_env: str = "dev"
    log_level: str = "INFO"

    database_path: str = "data/tasks.db"
    table_name: str = "tasks"
    blob_dir: str = "data/blobs"
    max_upload_size_bytes: int = 5 * 1024 * 1024
    public_base_url: str = ""

    identity_database_path: str = "data/identity.db"
    user_pool_id: str = "local-user-pool"
    client_id: str = "local-client"
    token_secret_key: str = "change-me-in-production"
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_seconds: int = 30 * 24 * 3600
    reset_code_ttl_seconds: int = 3600

    model_config = SettingsConfigDict(env_file=".env", env_prefix="TASKAPI_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
