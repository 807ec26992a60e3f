from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Application
    app_name: str = "vitals"
    app_version: str = "0.1.0"
    app_env: str = "development"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Health sweeps (seconds)
    health_check_interval: int = 60
    critical_check_interval: int = 30
    enable_periodic_health_checks: bool = True
    enable_external_health_checks: bool = True

    # Probe timeouts (ms)
    health_check_timeout_ms: int = 5_000
    db_health_check_timeout_ms: int = 3_000
    external_api_timeout_ms: int = 10_000

    # Probe verdicts
    max_consecutive_failures: int = 3  # flags a dependency as flapping
    degraded_threshold_ms: int = 2_000
    unhealthy_threshold_ms: int = 5_000
    retry_backoff_ms: int = 1_000  # delay before retry N is N * backoff
    health_history_size: int = 100

    # Built-in dependencies
    database_path: str = "data/vitals.db"
    file_system_check_dir: str = "temp"
    dependencies_file: str = "dependencies.yaml"  # optional external APIs

    # Performance metrics
    system_metrics_interval: int = 60  # seconds
    endpoint_metrics_retention: int = 1_000  # durations kept per endpoint
    slow_query_retention: int = 100
    slow_request_threshold_ms: int = 2_000
    slow_query_threshold_ms: int = 1_000
    high_memory_threshold: float = 85.0  # percent
    high_cpu_threshold: float = 80.0  # percent

    # Runtime instrumentation
    enable_gc_monitoring: bool = True
    gc_pause_warning_ms: float = 100.0
    enable_event_loop_monitoring: bool = True
    event_loop_sample_interval: int = 5  # seconds between published means
    event_loop_resolution_ms: int = 20
    event_loop_delay_threshold_ms: float = 50.0

    # Alerts (optional: Slack / Telegram)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


settings = Settings()
