"""
Merchant notification configuration.

Provides the read-only structure the notification scheduler consumes:
- Notification timing (minutes before the estimated ready time)
- Queue policy (grace period and no-show timeout)
- Message templates with {Placeholder} markers
"""
from threading import Lock
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from waitline.lib.logging import get_logger
from waitline.lib.settings import settings


logger = get_logger(__name__)


DEFAULT_ALMOST_READY = (
    "Hi {CustomerName}! Your table at {RestaurantName} will be ready in ~{Minutes} minutes. "
    "Please start making your way to the restaurant \U0001F6B6"
)
DEFAULT_TABLE_READY = (
    "\U0001F389 {CustomerName}, your table is NOW READY! Please see our host at {RestaurantName}. "
    "You have {Timeout} minutes to claim your table."
)
DEFAULT_NO_SHOW_WARNING = (
    "⚠️ {CustomerName}, we've been holding your table for {Minutes} minutes. "
    "Please respond within {Remaining} minutes or we'll need to release your table to the next guest."
)
DEFAULT_NO_SHOW_FINAL = (
    "Unfortunately, your table at {RestaurantName} has been released to the next guest due to no-show. "
    "We hope to serve you another time!"
)
DEFAULT_CUSTOMER_CALLED = (
    "\U0001F514 It's your turn {CustomerName}! Party of {PartySize}, position #{Position}. "
    "Please come to the host stand at {RestaurantName} and show code {Code}."
)
DEFAULT_REQUEUED = (
    "\U0001F504 You've been requeued {CustomerName}! Your new position at {RestaurantName} is #{Position}. "
    "We'll notify you when it's your turn."
)
DEFAULT_POSITION_UPDATE = (
    "Queue update {CustomerName}: you are now #{Position} at {RestaurantName}. "
    "Someone has been seated - you're moving up!"
)


class NotificationTiming(BaseModel):
    """
    When notifications go out, in minutes before the estimated ready time.
    
    A first_notification of 0 disables the "almost ready" message.
    """
    
    first_notification: int = Field(
        default=10,
        ge=0,
        le=240,
        description="Minutes before ready for the almost-ready message (0 disables)"
    )
    final_notification: int = Field(
        default=0,
        ge=0,
        le=240,
        description="Minutes before ready for the table-ready message"
    )
    send_no_show_warning: bool = Field(
        default=True,
        description="Chain into the no-show warning after the table-ready message"
    )
    send_position_updates: bool = Field(
        default=False,
        description="Tell waiting customers their new position after someone is seated"
    )


class QueuePolicy(BaseModel):
    """No-show escalation policy."""
    
    grace_period: int = Field(
        default=5,
        ge=0,
        le=120,
        description="Minutes between table-ready and the first no-show warning"
    )
    no_show_timeout: int = Field(
        default=15,
        ge=1,
        le=240,
        description="Total minutes after table-ready before the entry is released"
    )
    
    @model_validator(mode="after")
    def check_timeout_covers_grace(self) -> "QueuePolicy":
        if self.no_show_timeout < self.grace_period:
            raise ValueError("no_show_timeout must be greater than or equal to grace_period")
        return self


class MessageTemplates(BaseModel):
    """Message templates per notification type."""
    
    almost_ready: str = DEFAULT_ALMOST_READY
    table_ready: str = DEFAULT_TABLE_READY
    no_show_warning: str = DEFAULT_NO_SHOW_WARNING
    no_show_final: str = DEFAULT_NO_SHOW_FINAL
    customer_called: str = DEFAULT_CUSTOMER_CALLED
    requeued: str = DEFAULT_REQUEUED
    position_update: str = DEFAULT_POSITION_UPDATE


class MerchantNotificationConfig(BaseModel):
    """
    Complete notification configuration for one merchant.
    
    timing=None means the merchant never configured notifications; the
    scheduler then skips scheduling instead of failing.
    """
    
    merchant_id: str
    business_name: str = Field(default="our restaurant")
    timing: Optional[NotificationTiming] = None
    queue_policy: QueuePolicy = Field(default_factory=QueuePolicy)
    templates: MessageTemplates = Field(default_factory=MessageTemplates)
    
    @property
    def notifications_configured(self) -> bool:
        return self.timing is not None
    
    class Config:
        json_schema_extra = {
            "example": {
                "merchant_id": "m-123",
                "business_name": "Demo Bistro",
                "timing": {"first_notification": 10, "final_notification": 0, "send_no_show_warning": True},
                "queue_policy": {"grace_period": 5, "no_show_timeout": 15},
            }
        }


def default_merchant_config(merchant_id: str, business_name: str = "our restaurant") -> MerchantNotificationConfig:
    """
    Build a configuration from the application-wide defaults in settings.
    """
    return MerchantNotificationConfig(
        merchant_id=merchant_id,
        business_name=business_name,
        timing=NotificationTiming(
            first_notification=settings.default_first_notification,
            final_notification=settings.default_final_notification,
        ),
        queue_policy=QueuePolicy(
            grace_period=settings.default_grace_period,
            no_show_timeout=settings.default_no_show_timeout,
        ),
    )


class MerchantConfigStore:
    """
    In-memory merchant configuration lookup.
    
    The queue engine only reads from it; saving settings is a dashboard concern.
    """
    
    def __init__(self):
        self._lock = Lock()
        self._configs: Dict[str, MerchantNotificationConfig] = {}
    
    def get(self, merchant_id: str) -> Optional[MerchantNotificationConfig]:
        """Get configuration for a merchant, or None if never saved."""
        with self._lock:
            return self._configs.get(merchant_id)
    
    def set(self, config: MerchantNotificationConfig) -> None:
        """Store (replace) a merchant configuration."""
        with self._lock:
            self._configs[config.merchant_id] = config
        logger.info("Updated merchant notification config", extra={
            "merchant_id": config.merchant_id,
            "configured": config.notifications_configured,
        })
    
    def remove(self, merchant_id: str) -> None:
        """Forget a merchant configuration (no-op if absent)."""
        with self._lock:
            self._configs.pop(merchant_id, None)
