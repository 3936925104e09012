from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POLICY_WATCHER_", env_file=".env", extra="ignore")

    ENV: str = "local"
    LOG_LEVEL: str = "INFO"
    JSON_LOGGING: bool = False
    # configure structlog when the package is imported
    SETUP_LOGGING: bool = True

    # upper bound for each handle shutdown and for the subscription loop to exit on close
    SHUTDOWN_TIMEOUT_SECONDS: float = 10.0
    # None means the send is bounded only by the transport itself
    PUBLISH_TIMEOUT_SECONDS: float | None = 10.0

    REDIS_DEFAULT_CHANNEL: str = "casbin-policy-updated"


settings = Settings()
