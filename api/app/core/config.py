from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "runboard-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    feedback_window_days: int = 90
    overview_max_rows: int = 5000
    overview_latency_sample_size: int = 500
    stage_stats_max_rows: int = 5000
    batch_labels_limit: int = 100
    orchestrator_api_key: str | None = None
    blob_store_url: str | None = None
    blob_store_service_key: str | None = None
    blob_store_bucket: str = "property-images"
    blob_store_timeout_seconds: float = 30.0
    room_upload_webhook_url: str | None = None
    room_upload_webhook_timeout_seconds: float = 5.0
    room_upload_webhook_max_attempts: int = 3
    room_upload_webhook_backoff_base_seconds: float = 1.0
    room_upload_webhook_backoff_max_seconds: float = 4.0
    otel_enabled: bool = True
    otel_service_name: str = "runboard-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RB_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
