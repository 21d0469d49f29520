from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Daycare Payments API"
    app_version: str = "0.1.0"
    frontend_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///./local.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    log_json: bool = False

    paystack_secret_key: str = ""
    paystack_public_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_callback_url: str | None = None
    gateway_timeout_seconds: float = 30.0
    default_currency: str = "GHS"

    payment_lock_ttl_seconds: int = 30
    payment_stats_cache_ttl_seconds: int = 300

    receipt_delivery_task: str = "notifications.deliver_payment_receipt"
    notifications_queue: str = "notifications"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
