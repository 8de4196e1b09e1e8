"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Application
    app_name: str = Field(default="Waitline Queue Manager", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON lines")
    
    # Persistence
    database_url: str = Field(
        default="sqlite:///./waitline.db",
        description="SQLAlchemy connection string for the SQL queue store"
    )
    queue_store: str = Field(
        default="memory",
        description="Queue persistence adapter: memory or sql"
    )
    
    # Timers
    timer_backend: str = Field(
        default="apscheduler",
        description="Timer backend: apscheduler or manual"
    )
    scheduler_timezone: str = Field(default="UTC", description="Scheduler timezone")
    
    # Verification codes
    verification_code_max_attempts: int = Field(
        default=50,
        ge=1,
        description="Collision retries before code generation gives up"
    )
    
    # Queue defaults
    default_max_capacity: int = Field(default=100, ge=1, description="Default queue capacity")
    default_average_service_time: int = Field(
        default=15,
        ge=1,
        description="Default minutes per party used for wait estimates"
    )
    
    # Merchant notification defaults (minutes)
    default_first_notification: int = Field(default=10, ge=0)
    default_final_notification: int = Field(default=0, ge=0)
    default_grace_period: int = Field(default=5, ge=0)
    default_no_show_timeout: int = Field(default=15, ge=1)
    
    # Notification dispatch
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Relay endpoint that owns webchat/WhatsApp/Messenger transports"
    )
    notification_webhook_timeout: float = Field(
        default=5.0,
        description="Webhook relay timeout in seconds"
    )
    notification_webhook_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per message when the relay is unreachable"
    )
    default_channel: str = Field(
        default="webchat",
        description="Channel used when an entry's channel has no provider"
    )


# Global settings instance
settings = Settings()
