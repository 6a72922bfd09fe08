"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "sqlite:///./data/app.db"

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"
    # Stored as string to avoid pydantic-settings JSON parsing; use cors_origins_list property
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Deduplication windows (seconds), tiered by category
    DEDUP_WINDOW_SHORT_SECONDS: int = 10  # motion, person, vehicle, object
    DEDUP_WINDOW_STANDARD_SECONDS: int = 30  # face, intrusion
    DEDUP_WINDOW_LONG_SECONDS: int = 90  # fire, fall, theft

    # Alert evaluation
    PEOPLE_COUNT_ALERT_THRESHOLD: int = 15  # Organization setting overrides this

    # Notification fan-out
    FANOUT_CONCURRENCY: int = 10

    # Messaging gateway (push / email / SMS). Unset = log-only delivery
    MESSAGING_GATEWAY_URL: Optional[str] = None
    MESSAGING_GATEWAY_TOKEN: Optional[str] = None
    MESSAGING_GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Emergency response
    EMERGENCY_ACTION_TIMEOUT_SECONDS: float = 10.0
    EMERGENCY_RECORDING_DURATION_SECONDS: int = 1800  # 30 minutes
    EMERGENCY_POLICE_CONFIDENCE_THRESHOLD: float = 0.8
    EMERGENCY_CONTEXT_WINDOW_SECONDS: int = 30  # Pre/post context snapshots
    # Integration endpoints. Unset = simulated execution
    EMERGENCY_SERVICES_WEBHOOK_URL: Optional[str] = None
    BUILDING_MANAGEMENT_WEBHOOK_URL: Optional[str] = None
    CAMERA_CONTROL_WEBHOOK_URL: Optional[str] = None

    # Realtime broadcast
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 5
    REALTIME_RECONNECT_BASE_DELAY: float = 1.0
    REALTIME_RECENT_UPDATES: int = 50
    REALTIME_MAX_PENDING_MESSAGES: int = 1000  # per subscription; overflow closes it

    # Shutdown
    SHUTDOWN_DRAIN_TIMEOUT_SECONDS: float = 30.0

    @field_validator(
        'DEDUP_WINDOW_SHORT_SECONDS',
        'DEDUP_WINDOW_STANDARD_SECONDS',
        'DEDUP_WINDOW_LONG_SECONDS',
        mode='after'
    )
    @classmethod
    def validate_dedup_window(cls, v: int) -> int:
        """Dedup windows cannot be negative."""
        if v < 0:
            raise ValueError("Dedup window must be >= 0 seconds")
        return v

    @field_validator('EMERGENCY_POLICE_CONFIDENCE_THRESHOLD', mode='after')
    @classmethod
    def validate_police_threshold(cls, v: float) -> float:
        """Validate police escalation threshold is a probability."""
        if v < 0.0 or v > 1.0:
            raise ValueError("EMERGENCY_POLICE_CONFIDENCE_THRESHOLD must be within [0, 1]")
        return v

    @field_validator('FANOUT_CONCURRENCY', mode='after')
    @classmethod
    def validate_fanout_concurrency(cls, v: int) -> int:
        """Fan-out needs at least one worker."""
        if v < 1:
            raise ValueError("FANOUT_CONCURRENCY must be >= 1")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Global settings instance
settings = Settings()
