from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Upstream completion endpoint (OpenAI-compatible)
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    llm_api_key: str = ""
    llm_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.0
    llm_truncate_chars: int = 4000  # document text is sliced to this many chars
    llm_max_output_tokens: int = 800
    llm_timeout_seconds: float = 60.0  # per-call timeout

    # Retry policy
    retry_max_attempts: int = 6
    retry_base_delay_ms: int = 500
    retry_max_delay_ms: int = 30_000

    # Request queue
    queue_concurrency: int = 1  # 1 = strict
    queue_interval_cap: int = 1  # starts allowed per interval
    queue_interval_ms: int = 1000
    queue_hold_slot_during_backoff: bool = True  # False = release slot between attempts

    # Downstream automation (n8n webhook)
    n8n_webhook_url: str = ""  # leave empty to disable forwarding
    n8n_timeout_seconds: float = 15.0

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 4000
    max_upload_bytes: int = 10 * 1024 * 1024
    process_rate_limit: str = "30/minute"

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.app_env == "production":
        if not settings.llm_api_key:
            errors.append("LLM_API_KEY must be set")
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if settings.queue_concurrency < 1:
        errors.append("QUEUE_CONCURRENCY must be at least 1")
    if settings.queue_interval_cap < 1:
        errors.append("QUEUE_INTERVAL_CAP must be at least 1")
    if settings.retry_max_attempts < 1:
        errors.append("RETRY_MAX_ATTEMPTS must be at least 1")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
