"""
Queue application service.

Every mutating operation runs load -> mutate -> save with no await in
between, then publishes the aggregate's events and performs notification
side effects. Notification delivery is best-effort; queue state is not.
"""
from typing import List, Optional

from waitline.lib.events import EventBus, QueueEvent
from waitline.lib.logging import get_logger
from waitline.lib.merchant_config import (
    MerchantConfigStore,
    MerchantNotificationConfig,
    default_merchant_config,
)
from waitline.lib.metrics import MetricsCollector, get_metrics_collector
from waitline.lib.settings import settings
from waitline.lib.verification_code import VerificationCodeGenerator
from waitline.models.queue import (
    EntryStatus,
    Platform,
    QueueAggregate,
    QueueEntry,
    QueueStats,
)
from waitline.services.queue_notification_service import NotificationType, QueueNotificationService
from waitline.services.queue_repository import QueueRepository


logger = get_logger(__name__)


class QueueService:
    """
    Application-level queue operations for the HTTP layer and chat flows.
    """

    def __init__(
        self,
        repository: QueueRepository,
        config_store: MerchantConfigStore,
        notifications: QueueNotificationService,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.repository = repository
        self.config_store = config_store
        self.notifications = notifications
        self.event_bus = event_bus or notifications.event_bus or EventBus()
        if notifications.event_bus is None:
            notifications.event_bus = self.event_bus
        self.metrics = metrics or get_metrics_collector()

    @property
    def timers(self):
        return self.notifications.timers

    def _now(self):
        return self.timers.now()

    # ===== Queues =====

    def create_queue(
        self,
        merchant_id: str,
        name: str = "Main queue",
        max_capacity: Optional[int] = None,
        average_service_time: Optional[int] = None,
        accepting_customers: bool = True,
    ) -> QueueAggregate:
        """Create and persist an empty queue for a merchant."""
        queue = QueueAggregate(
            merchant_id=merchant_id,
            name=name,
            max_capacity=max_capacity or settings.default_max_capacity,
            average_service_time=average_service_time or settings.default_average_service_time,
            accepting_customers=accepting_customers,
            code_generator=VerificationCodeGenerator(max_attempts=settings.verification_code_max_attempts),
        )
        self.repository.save_queue(queue)

        logger.info(
            f"Created queue '{name}'",
            extra={"queue_id": queue.id, "merchant_id": merchant_id},
        )
        return queue

    def get_queue(self, queue_id: str) -> QueueAggregate:
        return self.repository.load_queue(queue_id)

    def list_queues(self, merchant_id: Optional[str] = None) -> List[QueueAggregate]:
        return self.repository.list_queues(merchant_id)

    def get_stats(self, queue_id: str) -> QueueStats:
        return self.repository.load_queue(queue_id).get_stats(self._now())

    # ===== Merchant settings =====

    def get_merchant_config(self, merchant_id: str) -> Optional[MerchantNotificationConfig]:
        """Saved notification settings, or None if the merchant never saved any."""
        return self.config_store.get(merchant_id)

    def get_merchant_config_or_default(self, merchant_id: str) -> MerchantNotificationConfig:
        return self.config_store.get(merchant_id) or default_merchant_config(merchant_id)

    def set_merchant_config(self, config: MerchantNotificationConfig) -> MerchantNotificationConfig:
        self.config_store.set(config)
        return config

    def remove_merchant_config(self, merchant_id: str) -> None:
        self.config_store.remove(merchant_id)

    # ===== Joining =====

    async def add_customer(
        self,
        queue_id: str,
        customer_id: str,
        customer_name: str,
        customer_phone: str,
        party_size: int = 1,
        notes: str = "",
        platform: Platform = Platform.WEB,
        service_type: str = "dine-in",
        special_requests: str = "",
        session_id: Optional[str] = None,
    ) -> QueueEntry:
        """
        Add a customer to the end of the line.

        Raises:
            QueueNotFound, QueueClosed, CapacityExceeded
        """
        queue = self.repository.load_queue(queue_id)
        entry = queue.add_customer(
            customer_id=customer_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            party_size=party_size,
            notes=notes,
            platform=platform,
            service_type=service_type,
            special_requests=special_requests,
            session_id=session_id,
            now=self._now(),
        )
        events = self._commit(queue)

        await self._publish(events)
        return entry

    # ===== Calling =====

    async def call_next(self, queue_id: str) -> Optional[QueueEntry]:
        """
        Call the earliest waiting customer and start their notification chain.

        Returns:
            The called entry, or None when nobody is waiting
        """
        queue = self.repository.load_queue(queue_id)
        entry = queue.call_next(now=self._now())
        if entry is None:
            logger.info("No customers waiting", extra={"queue_id": queue_id})
            return None

        return await self._after_call(queue, entry)

    async def call_specific(self, queue_id: str, entry_id: str) -> QueueEntry:
        """
        Call a waiting customer out of FIFO order.

        Raises:
            EntryNotFound: If the entry is not waiting
        """
        queue = self.repository.load_queue(queue_id)
        entry = queue.call_specific(entry_id, now=self._now())

        logger.info(
            "Out-of-order call",
            extra={"queue_id": queue_id, "entry_id": entry_id, "customer_id": entry.customer_id},
        )
        return await self._after_call(queue, entry)

    async def _after_call(self, queue: QueueAggregate, entry: QueueEntry) -> QueueEntry:
        events = self._commit(queue)
        config = self.config_store.get(queue.merchant_id)

        self.notifications.schedule_customer_notifications(queue, entry, config)

        await self._publish(events)
        await self.notifications.send_entry_message(
            queue, entry, config, NotificationType.CUSTOMER_CALLED
        )
        return entry

    def verify_code(self, queue_id: str, code: str) -> QueueEntry:
        """Called entry holding ``code``; raises EntryNotFound otherwise."""
        return self.repository.load_queue(queue_id).verify_code(code)

    async def claim(self, queue_id: str, code: str) -> QueueEntry:
        """Verify a customer's code at the host stand and complete the entry."""
        entry = self.verify_code(queue_id, code)
        return await self.complete_service(queue_id, entry.id)

    # ===== Serving and leaving =====

    async def mark_serving(self, queue_id: str, entry_id: str) -> QueueEntry:
        queue = self.repository.load_queue(queue_id)
        entry = queue.mark_serving(entry_id, now=self._now())
        self._clear_timers(queue, entry)
        events = self._commit(queue)

        await self._publish(events)
        return entry

    async def complete_service(
        self,
        queue_id: str,
        entry_id: str,
        resulting_status: EntryStatus = EntryStatus.COMPLETED,
    ) -> QueueEntry:
        """
        Finish a called or serving entry.

        Raises:
            EntryNotFound, InvalidTransition
        """
        queue = self.repository.load_queue(queue_id)
        entry = queue.complete_service(entry_id, resulting_status, now=self._now())
        self._clear_timers(queue, entry)
        queue.recompute_positions()
        events = self._commit(queue)

        await self._publish(events)
        await self._send_position_updates(queue)
        return entry

    async def remove_customer(
        self,
        queue_id: str,
        entry_id: str,
        reason: EntryStatus = EntryStatus.CANCELLED,
    ) -> QueueEntry:
        """Take an active entry out of the line (customer left or staff removed)."""
        queue = self.repository.load_queue(queue_id)
        entry = queue.remove_customer(entry_id, reason, now=self._now())
        self._clear_timers(queue, entry)
        queue.recompute_positions()
        events = self._commit(queue)

        await self._publish(events)
        await self._send_position_updates(queue)
        return entry

    async def requeue(self, queue_id: str, entry_id: str) -> QueueEntry:
        """
        Put a completed entry back at the end of the line.

        Raises:
            EntryNotFound, CapacityExceeded
        """
        queue = self.repository.load_queue(queue_id)
        entry = queue.requeue(entry_id, now=self._now())
        self._clear_timers(queue, entry)
        events = self._commit(queue)

        await self._publish(events)
        await self.notifications.send_entry_message(
            queue,
            entry,
            self.config_store.get(queue.merchant_id),
            NotificationType.REQUEUED,
        )
        return entry

    # ===== Accepting gate =====

    async def set_accepting(self, queue_id: str, accepting: Optional[bool] = None) -> bool:
        """
        Open or close the queue to new customers.

        Args:
            accepting: True/False to set, None to toggle

        Returns:
            The new accepting state
        """
        queue = self.repository.load_queue(queue_id)
        if accepting is None:
            result = queue.toggle_accepting()
        elif accepting:
            result = queue.start_accepting()
        else:
            result = queue.stop_accepting()
        events = self._commit(queue)

        await self._publish(events)
        return result

    # ===== Lifecycle =====

    def shutdown(self) -> None:
        """Cancel every outstanding notification timer."""
        self.notifications.clear_all_timers()

    # ===== Internals =====

    def _clear_timers(self, queue: QueueAggregate, entry: QueueEntry) -> None:
        self.notifications.clear_customer_timers(entry.customer_id, queue.id)

    def _commit(self, queue: QueueAggregate) -> List[QueueEvent]:
        self.repository.save_queue(queue)
        return queue.pull_events()

    async def _publish(self, events: List[QueueEvent]) -> None:
        for event in events:
            self.metrics.increment_queue_events(event.event_type.value)
        await self.event_bus.publish_many(events)

    async def _send_position_updates(self, queue: QueueAggregate) -> None:
        config = self.config_store.get(queue.merchant_id)
        if config is None or config.timing is None or not config.timing.send_position_updates:
            return

        for entry in queue.waiting_entries():
            await self.notifications.send_entry_message(
                queue, entry, config, NotificationType.POSITION_UPDATE
            )
