"""
API dependencies for FastAPI dependency injection.

Builds the process-wide queue service from settings. Tests replace it via
``app.dependency_overrides[get_queue_service]``.
"""
from typing import Optional

from waitline.jobs.scheduler import SchedulerManager
from waitline.jobs.timers import ManualTimerBackend, TimerBackend
from waitline.lib.db import SessionLocal, init_db
from waitline.lib.events import EventBus
from waitline.lib.logging import get_logger
from waitline.lib.merchant_config import MerchantConfigStore
from waitline.lib.settings import settings
from waitline.services.notification_service import NotificationDispatcher
from waitline.services.queue_notification_service import QueueNotificationService
from waitline.services.queue_repository import (
    InMemoryQueueRepository,
    QueueRepository,
    SqlQueueRepository,
)
from waitline.services.queue_service import QueueService


logger = get_logger(__name__)


# Singleton service instance
_queue_service: Optional[QueueService] = None


def build_timer_backend() -> TimerBackend:
    if settings.timer_backend == "manual":
        return ManualTimerBackend()
    return SchedulerManager(timezone_name=settings.scheduler_timezone)


def build_repository() -> QueueRepository:
    if settings.queue_store == "sql":
        init_db()
        return SqlQueueRepository(SessionLocal)
    return InMemoryQueueRepository()


def build_queue_service() -> QueueService:
    """
    Wire repository, timers, dispatcher and event bus from settings.
    """
    repository = build_repository()
    event_bus = EventBus()
    notifications = QueueNotificationService(
        timers=build_timer_backend(),
        dispatcher=NotificationDispatcher(),
        repository=repository,
        event_bus=event_bus,
    )

    logger.info(
        f"Queue service built (store={settings.queue_store}, timers={settings.timer_backend})"
    )
    return QueueService(
        repository=repository,
        config_store=MerchantConfigStore(),
        notifications=notifications,
        event_bus=event_bus,
    )


def get_queue_service() -> QueueService:
    """
    Get singleton queue service instance.

    Returns:
        QueueService instance
    """
    global _queue_service

    if _queue_service is None:
        _queue_service = build_queue_service()

    return _queue_service


def reset_queue_service() -> None:
    """Drop the singleton (tests and shutdown)."""
    global _queue_service
    _queue_service = None
