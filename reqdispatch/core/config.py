from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DISPATCH_",
        extra="ignore",
    )

    # Default addressing, applied to requests without their own scheme/host
    default_scheme: str | None = "https"
    default_host: str | None = None
    default_port: int | None = None

    # Execution queue
    max_concurrent_requests: int = 6

    # Transport
    request_timeout_seconds: float = 60.0
    retry_limit: int = 2
    retry_base_delay: float = 0.5
    retry_max_delay: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs


settings = Settings()


def validate_settings(config: Settings | None = None) -> None:
    """Validate dispatch settings. Raises SystemExit listing every problem."""
    config = config or settings
    errors: list[str] = []

    if config.default_port is not None and not 0 < config.default_port < 65536:
        errors.append("DISPATCH_DEFAULT_PORT must be between 1 and 65535")

    if config.max_concurrent_requests < 1:
        errors.append("DISPATCH_MAX_CONCURRENT_REQUESTS must be at least 1")

    if config.request_timeout_seconds <= 0:
        errors.append("DISPATCH_REQUEST_TIMEOUT_SECONDS must be positive")

    if config.retry_limit < 0:
        errors.append("DISPATCH_RETRY_LIMIT must not be negative")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
