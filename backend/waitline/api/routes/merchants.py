"""
Merchant notification settings API routes.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from waitline.api.dependencies import get_queue_service
from waitline.lib.merchant_config import (
    MerchantNotificationConfig,
    MessageTemplates,
    NotificationTiming,
    QueuePolicy,
)
from waitline.services.queue_service import QueueService


class NotificationSettingsRequest(BaseModel):
    """
    Notification settings payload.

    Sending ``timing: null`` turns scheduled notifications off for the merchant.
    """
    business_name: str = Field(default="our restaurant", min_length=1, max_length=255)
    timing: Optional[NotificationTiming] = Field(default_factory=NotificationTiming)
    queue_policy: QueuePolicy = Field(default_factory=QueuePolicy)
    templates: MessageTemplates = Field(default_factory=MessageTemplates)


class NotificationSettingsResponse(MerchantNotificationConfig):
    """Settings plus whether they were ever saved."""
    saved: bool = False


# Router
router = APIRouter(prefix="/merchants", tags=["merchants"])


@router.get("/{merchant_id}/notification-settings", response_model=NotificationSettingsResponse)
def get_notification_settings(
    merchant_id: str,
    service: QueueService = Depends(get_queue_service),
) -> NotificationSettingsResponse:
    """
    Get a merchant's notification settings.

    Unsaved merchants get the application defaults with ``saved: false``;
    no notifications are scheduled for them until settings are saved.
    """
    config = service.get_merchant_config(merchant_id)
    saved = config is not None
    if config is None:
        config = service.get_merchant_config_or_default(merchant_id)
    return NotificationSettingsResponse(**config.model_dump(), saved=saved)


@router.put("/{merchant_id}/notification-settings", response_model=NotificationSettingsResponse)
def update_notification_settings(
    merchant_id: str,
    request: NotificationSettingsRequest,
    service: QueueService = Depends(get_queue_service),
) -> NotificationSettingsResponse:
    """Save (replace) a merchant's notification settings."""
    config = service.set_merchant_config(
        MerchantNotificationConfig(merchant_id=merchant_id, **request.model_dump())
    )
    return NotificationSettingsResponse(**config.model_dump(), saved=True)


@router.delete("/{merchant_id}/notification-settings", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification_settings(
    merchant_id: str,
    service: QueueService = Depends(get_queue_service),
) -> Response:
    """Forget a merchant's settings; scheduling stops for newly called customers."""
    service.remove_merchant_config(merchant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
