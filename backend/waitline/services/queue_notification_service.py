"""
Queue notification scheduler.

Owns the per-customer timer chain that runs once a customer is called:

    IDLE -> FIRST_PENDING -> FINAL_PENDING -> NOSHOW_WARNING_PENDING
         -> NOSHOW_FINAL_PENDING -> NO_SHOW

Any transition of the entry out of ``called`` (completed, cancelled,
requeued, re-called) must go through clear_customer_timers(). Fired
callbacks re-read the entry from the repository and skip every side
effect when it is no longer called, so a late timer can never overwrite
a newer status.

Usage:
    scheduler = QueueNotificationService(timers, dispatcher, repository)
    scheduler.schedule_customer_notifications(queue, entry, config)
    ...
    scheduler.clear_customer_timers(entry.customer_id, queue.id)
"""
import enum
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, List, Optional, Tuple

from waitline.jobs.timers import TimerBackend, TimerHandle
from waitline.lib.events import EventBus
from waitline.lib.logging import get_logger
from waitline.lib.merchant_config import MerchantNotificationConfig, MessageTemplates
from waitline.lib.metrics import MetricsCollector, get_metrics_collector
from waitline.lib.templates import build_replacements, format_message
from waitline.models.queue import EntryStatus, QueueAggregate, QueueEntry
from waitline.models.errors import QueueNotFound
from waitline.services.notification_service import NotificationDispatcher, channel_for_platform
from waitline.services.queue_repository import QueueRepository


logger = get_logger(__name__)


class NotificationState(str, enum.Enum):
    """Where a called customer is in the notification chain."""
    IDLE = "idle"
    FIRST_PENDING = "first_pending"
    FINAL_PENDING = "final_pending"
    NOSHOW_WARNING_PENDING = "noshow_warning_pending"
    NOSHOW_FINAL_PENDING = "noshow_final_pending"
    NO_SHOW = "no_show"


class TimerKind(str, enum.Enum):
    FIRST = "first"
    FINAL = "final"
    WARNING = "warning"
    NO_SHOW_FINAL = "no_show_final"


class NotificationType(str, enum.Enum):
    """Message purposes; values match the MessageTemplates field names."""
    ALMOST_READY = "almost_ready"
    TABLE_READY = "table_ready"
    NO_SHOW_WARNING = "no_show_warning"
    NO_SHOW_FINAL = "no_show_final"
    CUSTOMER_CALLED = "customer_called"
    REQUEUED = "requeued"
    POSITION_UPDATE = "position_update"


TimerKey = Tuple[str, str]


@dataclass
class CustomerTimerSet:
    """
    Live timers for one called customer.

    Holds only the identity needed to look the entry up again; entry state
    is always re-read when a timer fires.
    """

    queue_id: str
    customer_id: str
    entry_id: str
    config: MerchantNotificationConfig
    state: NotificationState = NotificationState.IDLE
    handles: Dict[TimerKind, TimerHandle] = field(default_factory=dict)

    @property
    def key(self) -> TimerKey:
        return (self.queue_id, self.customer_id)


class QueueNotificationService:
    """
    Schedules, fires and cancels queue notification timers.

    One instance per process; the timer map lives on the instance and is torn
    down by clear_all_timers() at shutdown.
    """

    def __init__(
        self,
        timers: TimerBackend,
        dispatcher: NotificationDispatcher,
        repository: QueueRepository,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.timers = timers
        self.dispatcher = dispatcher
        self.repository = repository
        self.event_bus = event_bus
        self.metrics = metrics or get_metrics_collector()
        self._timer_sets: Dict[TimerKey, CustomerTimerSet] = {}

    # ===== Scheduling =====

    def schedule_customer_notifications(
        self,
        queue: QueueAggregate,
        customer: QueueEntry,
        config: Optional[MerchantNotificationConfig],
    ) -> Optional[CustomerTimerSet]:
        """
        Start the notification chain for a called customer.

        Any previous timers for the customer are cancelled first, so calling
        this twice leaves exactly one live timer set.

        Returns:
            The new timer set, or None when the merchant has no notification config
        """
        self.clear_customer_timers(customer.customer_id, queue.id)

        if config is None or config.timing is None:
            logger.warning(
                "Merchant notification settings missing; skipping scheduling",
                extra={"queue_id": queue.id, "merchant_id": queue.merchant_id, "customer_id": customer.customer_id},
            )
            return None

        timing = config.timing
        timer_set = CustomerTimerSet(
            queue_id=queue.id,
            customer_id=customer.customer_id,
            entry_id=customer.id,
            config=config,
        )
        self._timer_sets[timer_set.key] = timer_set

        if timing.first_notification > 0:
            delay = max(0, customer.estimated_wait_time - timing.first_notification)
            self._schedule(timer_set, TimerKind.FIRST, delay * 60)
            timer_set.state = NotificationState.FIRST_PENDING
        else:
            timer_set.state = NotificationState.FINAL_PENDING

        delay = max(0, customer.estimated_wait_time - timing.final_notification)
        self._schedule(timer_set, TimerKind.FINAL, delay * 60)

        logger.info(
            "Scheduled customer notifications",
            extra={
                "queue_id": queue.id,
                "entry_id": customer.id,
                "customer_id": customer.customer_id,
                "state": timer_set.state.value,
            },
        )
        return timer_set

    def schedule_no_show_warning(
        self,
        queue: QueueAggregate,
        customer: QueueEntry,
        config: Optional[MerchantNotificationConfig],
    ) -> Optional[CustomerTimerSet]:
        """
        Schedule the no-show warning ``grace_period`` minutes from now.

        When the warning fires, the final no-show timer is scheduled for the
        remaining ``no_show_timeout - grace_period`` minutes.
        """
        if config is None:
            logger.warning(
                "Merchant notification settings missing; skipping no-show warning",
                extra={"queue_id": queue.id, "customer_id": customer.customer_id},
            )
            return None

        timer_set = self._timer_sets.get((queue.id, customer.customer_id))
        if timer_set is None or timer_set.entry_id != customer.id:
            self.clear_customer_timers(customer.customer_id, queue.id)
            timer_set = CustomerTimerSet(
                queue_id=queue.id,
                customer_id=customer.customer_id,
                entry_id=customer.id,
                config=config,
            )
            self._timer_sets[timer_set.key] = timer_set
        else:
            self._cancel_kinds(timer_set, (TimerKind.WARNING, TimerKind.NO_SHOW_FINAL))

        self._schedule(timer_set, TimerKind.WARNING, config.queue_policy.grace_period * 60)
        timer_set.state = NotificationState.NOSHOW_WARNING_PENDING

        logger.info(
            f"No-show warning in {config.queue_policy.grace_period} minutes",
            extra={"queue_id": queue.id, "entry_id": customer.id, "customer_id": customer.customer_id},
        )
        return timer_set

    def _schedule(self, timer_set: CustomerTimerSet, kind: TimerKind, delay_seconds: float) -> None:
        callback = partial(self._on_timer, timer_set, kind)
        timer_set.handles[kind] = self.timers.schedule(
            delay_seconds,
            callback,
            name=f"{kind.value}:{timer_set.queue_id}:{timer_set.customer_id}",
        )

    # ===== Cancellation =====

    def clear_customer_timers(self, customer_id: str, queue_id: Optional[str] = None) -> int:
        """
        Cancel every live timer for a customer.

        Safe to call when no timers exist and safe to call repeatedly.

        Args:
            customer_id: Customer whose timers to cancel
            queue_id: Restrict to one queue; all queues when omitted

        Returns:
            Number of timers cancelled
        """
        keys = [
            key for key in self._timer_sets
            if key[1] == customer_id and (queue_id is None or key[0] == queue_id)
        ]

        cancelled = 0
        for key in keys:
            timer_set = self._timer_sets.pop(key)
            cancelled += self._cancel_kinds(timer_set, list(timer_set.handles))
            if timer_set.state != NotificationState.NO_SHOW:
                timer_set.state = NotificationState.IDLE

        if cancelled:
            logger.info(
                f"Cleared {cancelled} timers",
                extra={"customer_id": customer_id, "queue_id": queue_id},
            )
        return cancelled

    def clear_all_timers(self) -> int:
        """Cancel everything (process shutdown)."""
        cancelled = 0
        for key in list(self._timer_sets):
            timer_set = self._timer_sets.pop(key)
            cancelled += self._cancel_kinds(timer_set, list(timer_set.handles))
            timer_set.state = NotificationState.IDLE

        logger.info(f"Cleared all notification timers ({cancelled} cancelled)")
        return cancelled

    def _cancel_kinds(self, timer_set: CustomerTimerSet, kinds) -> int:
        cancelled = 0
        for kind in kinds:
            handle = timer_set.handles.pop(kind, None)
            if handle is not None:
                self.timers.cancel(handle)
                self.metrics.increment_timers_cancelled()
                cancelled += 1
        return cancelled

    # ===== Introspection =====

    def get_state(self, customer_id: str, queue_id: Optional[str] = None) -> NotificationState:
        timer_set = self._find(customer_id, queue_id)
        return timer_set.state if timer_set else NotificationState.IDLE

    def has_timers(self, customer_id: str, queue_id: Optional[str] = None) -> bool:
        timer_set = self._find(customer_id, queue_id)
        return bool(timer_set and timer_set.handles)

    def active_timer_sets(self) -> List[CustomerTimerSet]:
        return list(self._timer_sets.values())

    def _find(self, customer_id: str, queue_id: Optional[str]) -> Optional[CustomerTimerSet]:
        for (set_queue_id, set_customer_id), timer_set in self._timer_sets.items():
            if set_customer_id == customer_id and (queue_id is None or set_queue_id == queue_id):
                return timer_set
        return None

    # ===== Firing =====

    async def _on_timer(self, timer_set: CustomerTimerSet, kind: TimerKind) -> None:
        if self._timer_sets.get(timer_set.key) is not timer_set or kind not in timer_set.handles:
            logger.debug(
                f"Stale {kind.value} timer ignored",
                extra={"queue_id": timer_set.queue_id, "customer_id": timer_set.customer_id},
            )
            return

        timer_set.handles.pop(kind)
        self.metrics.increment_timers_fired(kind.value)

        queue, entry = self._load_called_entry(timer_set)
        if entry is None:
            self.clear_customer_timers(timer_set.customer_id, timer_set.queue_id)
            return

        if kind == TimerKind.FIRST:
            await self._fire_first(timer_set, queue, entry)
        elif kind == TimerKind.FINAL:
            await self._fire_final(timer_set, queue, entry)
        elif kind == TimerKind.WARNING:
            await self._fire_warning(timer_set, queue, entry)
        else:
            await self.handle_no_show(queue, entry, timer_set.config)

    def _load_called_entry(self, timer_set: CustomerTimerSet):
        try:
            queue = self.repository.load_queue(timer_set.queue_id)
        except QueueNotFound:
            logger.warning(
                "Queue disappeared before timer fired",
                extra={"queue_id": timer_set.queue_id, "customer_id": timer_set.customer_id},
            )
            return None, None

        entry = queue.get_entry(timer_set.entry_id)
        if entry is None or entry.status != EntryStatus.CALLED:
            logger.info(
                "Customer no longer called; skipping timer",
                extra={
                    "queue_id": timer_set.queue_id,
                    "entry_id": timer_set.entry_id,
                    "customer_id": timer_set.customer_id,
                    "state": entry.status.value if entry else None,
                },
            )
            return queue, None
        return queue, entry

    async def _fire_first(self, timer_set: CustomerTimerSet, queue: QueueAggregate, entry: QueueEntry) -> None:
        if TimerKind.FINAL in timer_set.handles:
            timer_set.state = NotificationState.FINAL_PENDING

        await self._notify_and_record(
            queue,
            entry,
            timer_set.config,
            NotificationType.ALMOST_READY,
            Minutes=timer_set.config.timing.first_notification,
        )

    async def _fire_final(self, timer_set: CustomerTimerSet, queue: QueueAggregate, entry: QueueEntry) -> None:
        config = timer_set.config
        self._cancel_kinds(timer_set, (TimerKind.FIRST,))

        if config.timing.send_no_show_warning:
            self.schedule_no_show_warning(queue, entry, config)
        else:
            self._timer_sets.pop(timer_set.key, None)
            timer_set.state = NotificationState.IDLE

        await self._notify_and_record(
            queue,
            entry,
            config,
            NotificationType.TABLE_READY,
            Timeout=config.queue_policy.grace_period,
        )

    async def _fire_warning(self, timer_set: CustomerTimerSet, queue: QueueAggregate, entry: QueueEntry) -> None:
        policy = timer_set.config.queue_policy
        remaining = policy.no_show_timeout - policy.grace_period

        self._schedule(timer_set, TimerKind.NO_SHOW_FINAL, remaining * 60)
        timer_set.state = NotificationState.NOSHOW_FINAL_PENDING

        await self._notify_and_record(
            queue,
            entry,
            timer_set.config,
            NotificationType.NO_SHOW_WARNING,
            Minutes=policy.grace_period,
            Remaining=remaining,
        )

    async def handle_no_show(
        self,
        queue: QueueAggregate,
        customer: QueueEntry,
        config: Optional[MerchantNotificationConfig],
    ) -> bool:
        """
        Release a called customer who never arrived.

        Marks the entry no-show, renumbers the waiting line, saves, clears the
        customer's timers and sends the final "released" message.

        Returns:
            True if the entry was released, False if it had already left ``called``
        """
        entry = queue.get_entry(customer.id)
        if entry is None or entry.status != EntryStatus.CALLED:
            logger.info(
                "No-show skipped; entry no longer called",
                extra={"queue_id": queue.id, "entry_id": customer.id, "customer_id": customer.customer_id},
            )
            self.clear_customer_timers(customer.customer_id, queue.id)
            return False

        timer_set = self._timer_sets.get((queue.id, entry.customer_id))

        queue.mark_no_show(entry.id, now=self.timers.now())
        queue.recompute_positions()
        self.repository.save_queue(queue)
        events = queue.pull_events()

        self.clear_customer_timers(entry.customer_id, queue.id)
        if timer_set is not None:
            timer_set.state = NotificationState.NO_SHOW
        self.metrics.increment_no_shows()

        logger.warning(
            "Customer marked as no-show",
            extra={"queue_id": queue.id, "entry_id": entry.id, "customer_id": entry.customer_id},
        )

        await self.send_entry_message(queue, entry, config, NotificationType.NO_SHOW_FINAL)

        if self.event_bus is not None:
            await self.event_bus.publish_many(events)
        for event in events:
            self.metrics.increment_queue_events(event.event_type.value)
        return True

    # ===== Messages =====

    async def _notify_and_record(
        self,
        queue: QueueAggregate,
        entry: QueueEntry,
        config: MerchantNotificationConfig,
        notification_type: NotificationType,
        **replacements,
    ) -> bool:
        entry.record_notification(self.timers.now())
        self.repository.save_queue(queue)
        return await self.send_entry_message(queue, entry, config, notification_type, **replacements)

    async def send_entry_message(
        self,
        queue: QueueAggregate,
        entry: QueueEntry,
        config: Optional[MerchantNotificationConfig],
        notification_type: NotificationType,
        **replacements,
    ) -> bool:
        """
        Format a template for an entry and hand it to the dispatcher.

        Falls back to the default templates when the merchant has no config.
        Dispatcher failures are reported as False, never raised.
        """
        templates = config.templates if config else MessageTemplates()
        business_name = config.business_name if config else "our restaurant"
        template = getattr(templates, NotificationType(notification_type).value)

        message = format_message(
            template,
            build_replacements(entry, business_name, QueueName=queue.name, **replacements),
        )

        try:
            return await self.dispatcher.send(
                entry.customer_id,
                channel_for_platform(entry.platform),
                message,
                notification_type=NotificationType(notification_type).value,
                queue_id=queue.id,
                entry_id=entry.id,
                session_id=entry.session_id,
            )
        except Exception as e:
            logger.error(
                f"Dispatcher raised: {e}",
                extra={
                    "queue_id": queue.id,
                    "customer_id": entry.customer_id,
                    "notification_type": NotificationType(notification_type).value,
                },
                exc_info=True,
            )
            return False
