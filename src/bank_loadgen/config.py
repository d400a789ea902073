from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    base_url: str = "http://localhost:8080"
    profile: str = "smoke"
    profile_path: str | None = None
    seed: int | None = None
    http_timeout: float = 10.0
    provision_count: int | None = None
    provision_delay: float = 0.1
    tick_interval: float = 0.1
    metrics_port: int | None = None
    summary_path: str | None = None
    log_level: str = "INFO"
