from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_name: str = "Driver Proximity Service"
    debug: bool = False
    port: int = 8080
    log_level: str = "INFO"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    driver_key_prefix: str = "driver:"

    # Spatial index
    h3_resolution: int = Field(9, ge=0, le=15)
    neighborhood_radius: int = Field(3, ge=0)  # rings around the rider's cell

    # Proximity queries
    scan_timeout_seconds: float = Field(5.0, gt=0)
    scan_batch_size: int = Field(500, ge=1)

    # Stale driver cleanup (0 disables)
    driver_ttl_seconds: int = 3600
    reaper_interval_seconds: float = Field(60.0, gt=0)

    # Event protocol
    reject_unknown_events: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
