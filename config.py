from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Service settings
    service_version: str = "1.0.0"
    log_level: str = "INFO"

    # Database settings
    database_url: str = "sqlite:///./guest_portal.db"
    database_echo: bool = False
    seed_demo_data: bool = True

    # Account settings
    bcrypt_rounds: int = 12

    # Booking rules
    cancellation_window_hours: int = 24
    loyalty_points_divisor: int = 10
    bookings_page_size: int = 5
    service_requests_page_size: int = 3
    notifications_limit: int = 10

    # Flipt settings
    flipt_enabled: bool = True
    flipt_url: str = "http://flipt:8080"
    flipt_namespace: str = "default"

    # OpenTelemetry settings
    telemetry_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4318"
    otel_exporter_otlp_metrics_endpoint: str = "http://prometheus:9090"
    otel_exporter_otlp_metrics_headers: str = ""
    otel_service_name: str = "guest-portal"

    # CORS settings
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080", "http://webapp"]

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
