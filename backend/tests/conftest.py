"""
Shared fixtures: fake clock, recording notification provider and a fully
wired in-memory queue service.
"""
from typing import List, Optional

import pytest

from waitline.jobs.timers import ManualTimerBackend
from waitline.lib.events import EventBus
from waitline.lib.merchant_config import (
    MerchantConfigStore,
    MerchantNotificationConfig,
    NotificationTiming,
    QueuePolicy,
)
from waitline.lib.metrics import MetricsCollector
from waitline.services.notification_service import (
    MessageChannel,
    NotificationDispatcher,
    NotificationProvider,
)
from waitline.services.queue_notification_service import QueueNotificationService
from waitline.services.queue_repository import InMemoryQueueRepository
from waitline.services.queue_service import QueueService


MERCHANT_ID = "m-1"


class RecordingProvider(NotificationProvider):
    """Provider that keeps every message instead of delivering it."""

    def __init__(self, channel: MessageChannel = MessageChannel.WEBCHAT, result: bool = True):
        self._channel = channel
        self.result = result
        self.error: Optional[Exception] = None
        self.sent: List[dict] = []

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    async def send(self, to: str, message: str, **kwargs) -> bool:
        self.sent.append({"to": to, "message": message, **kwargs})
        if self.error is not None:
            raise self.error
        return self.result

    def of_type(self, notification_type: str) -> List[dict]:
        return [m for m in self.sent if m.get("notification_type") == notification_type]


@pytest.fixture
def timers():
    return ManualTimerBackend()


@pytest.fixture
def metrics():
    """Fresh metrics collector for each test."""
    return MetricsCollector()


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def dispatcher(provider, metrics):
    return NotificationDispatcher(
        providers={MessageChannel.WEBCHAT: provider},
        default_channel=MessageChannel.WEBCHAT,
        metrics=metrics,
    )


@pytest.fixture
def repository():
    return InMemoryQueueRepository()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def merchant_config():
    return MerchantNotificationConfig(
        merchant_id=MERCHANT_ID,
        business_name="Demo Bistro",
        timing=NotificationTiming(first_notification=10, final_notification=0),
        queue_policy=QueuePolicy(grace_period=5, no_show_timeout=15),
    )


@pytest.fixture
def config_store(merchant_config):
    store = MerchantConfigStore()
    store.set(merchant_config)
    return store


@pytest.fixture
def notifier(timers, dispatcher, repository, event_bus, metrics):
    return QueueNotificationService(
        timers=timers,
        dispatcher=dispatcher,
        repository=repository,
        event_bus=event_bus,
        metrics=metrics,
    )


@pytest.fixture
def queue_service(repository, config_store, notifier, event_bus, metrics):
    return QueueService(
        repository=repository,
        config_store=config_store,
        notifications=notifier,
        event_bus=event_bus,
        metrics=metrics,
    )
