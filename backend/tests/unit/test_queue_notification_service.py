"""
Unit tests for the queue notification scheduler.

All timing runs on ManualTimerBackend; nothing here waits on wall-clock time.
"""
from datetime import timedelta

import pytest

from waitline.lib.events import QueueEventType
from waitline.lib.merchant_config import MerchantNotificationConfig, NotificationTiming, QueuePolicy
from waitline.models.queue import EntryStatus, QueueAggregate
from waitline.services.queue_notification_service import NotificationState


MERCHANT_ID = "m-1"


def config_with(first=10, final=0, grace=5, timeout=15, warn=True):
    return MerchantNotificationConfig(
        merchant_id=MERCHANT_ID,
        business_name="Demo Bistro",
        timing=NotificationTiming(
            first_notification=first,
            final_notification=final,
            send_no_show_warning=warn,
        ),
        queue_policy=QueuePolicy(grace_period=grace, no_show_timeout=timeout),
    )


def call_customer(repository, timers, estimated_wait=0, waiting_behind=0):
    """Persist a queue whose first customer has just been called."""
    queue = QueueAggregate(merchant_id=MERCHANT_ID, name="Main")
    entry = queue.add_customer("c-1", "Ana", "+15550001", now=timers.now())
    for i in range(waiting_behind):
        queue.add_customer(
            f"c-{i + 2}",
            f"Guest {i + 2}",
            "+15550002",
            now=timers.now() + timedelta(seconds=i + 1),
        )
    entry.estimated_wait_time = estimated_wait

    queue.call_next(now=timers.now())
    repository.save_queue(queue)
    queue.pull_events()
    return queue, entry


# ===== Scheduling =====


@pytest.mark.unit
@pytest.mark.asyncio
async def test_final_notification_fires_at_offset(notifier, repository, timers, provider):
    """Wait 10 min, final offset 5 min: one table-ready message at +5 min."""
    queue, entry = call_customer(repository, timers, estimated_wait=10)

    notifier.schedule_customer_notifications(queue, entry, config_with(first=0, final=5))

    await timers.advance(minutes=4)
    assert provider.of_type("table_ready") == []

    await timers.advance(minutes=1)
    [message] = provider.of_type("table_ready")
    assert message["to"] == "c-1"
    assert "Ana" in message["message"]
    assert "Demo Bistro" in message["message"]
    assert "You have 5 minutes to claim your table." in message["message"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_then_final_notification(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers, estimated_wait=20)

    timer_set = notifier.schedule_customer_notifications(queue, entry, config_with(first=10, final=0))
    assert timer_set.state == NotificationState.FIRST_PENDING

    await timers.advance(minutes=10)
    [almost] = provider.of_type("almost_ready")
    assert "~10 minutes" in almost["message"]
    assert provider.of_type("table_ready") == []
    assert notifier.get_state("c-1") == NotificationState.FINAL_PENDING

    await timers.advance(minutes=10)
    assert len(provider.of_type("table_ready")) == 1
    assert notifier.get_state("c-1") == NotificationState.NOSHOW_WARNING_PENDING

    stored = repository.load_queue(queue.id).get_entry(entry.id)
    assert stored.notification_count == 2
    assert stored.last_notified == timers.now()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_zero_first_notification_is_skipped(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers, estimated_wait=20)

    timer_set = notifier.schedule_customer_notifications(queue, entry, config_with(first=0, final=0))

    assert timer_set.state == NotificationState.FINAL_PENDING
    assert timers.pending_count() == 1

    await timers.advance(minutes=20)
    assert provider.of_type("almost_ready") == []
    assert len(provider.of_type("table_ready")) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_final_firing_first_cancels_almost_ready(notifier, repository, timers, provider):
    """Final offset larger than first offset: table-ready wins, almost-ready never goes out."""
    queue, entry = call_customer(repository, timers, estimated_wait=20)

    notifier.schedule_customer_notifications(queue, entry, config_with(first=5, final=10, warn=False))

    await timers.advance(minutes=30)

    assert len(provider.of_type("table_ready")) == 1
    assert provider.of_type("almost_ready") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scheduling_twice_keeps_one_timer_set(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers, estimated_wait=10)
    config = config_with(first=5, final=0, warn=False)

    notifier.schedule_customer_notifications(queue, entry, config)
    pending_after_first = timers.pending_count()
    notifier.schedule_customer_notifications(queue, entry, config)

    assert timers.pending_count() == pending_after_first == 2
    assert len(notifier.active_timer_sets()) == 1

    await timers.advance(minutes=30)
    assert len(provider.of_type("almost_ready")) == 1
    assert len(provider.of_type("table_ready")) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_config_is_a_logged_noop(notifier, repository, timers, provider, caplog):
    queue, entry = call_customer(repository, timers)

    assert notifier.schedule_customer_notifications(queue, entry, None) is None

    unconfigured = MerchantNotificationConfig(merchant_id=MERCHANT_ID)
    assert notifier.schedule_customer_notifications(queue, entry, unconfigured) is None
    assert notifier.schedule_no_show_warning(queue, entry, None) is None

    assert timers.pending_count() == 0
    await timers.advance(minutes=60)
    assert provider.sent == []
    assert "settings missing" in caplog.text


# ===== No-show chain =====


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_show_chain(notifier, repository, timers, provider, metrics, event_bus):
    """Table-ready at call, warning at +5 min, release at +15 min."""
    received = []
    event_bus.subscribe(QueueEventType.ENTRY_NO_SHOW, received.append)
    queue, entry = call_customer(repository, timers, estimated_wait=0, waiting_behind=2)
    queue.recompute_positions()
    # Leave a gap so the release has something to renumber
    queue.waiting_entries()[0].position = 5
    repository.save_queue(queue)

    timer_set = notifier.schedule_customer_notifications(queue, entry, config_with(first=10, final=0))

    await timers.advance(seconds=0)
    assert len(provider.of_type("table_ready")) == 1

    await timers.advance(minutes=4)
    assert provider.of_type("no_show_warning") == []

    await timers.advance(minutes=1)
    [warning] = provider.of_type("no_show_warning")
    assert "holding your table for 5 minutes" in warning["message"]
    assert "within 10 minutes" in warning["message"]
    assert notifier.get_state("c-1") == NotificationState.NOSHOW_FINAL_PENDING

    await timers.advance(minutes=9)
    assert entry.status == EntryStatus.CALLED

    await timers.advance(minutes=1)
    stored = repository.load_queue(queue.id)
    released = stored.get_entry(entry.id)

    assert released.status == EntryStatus.NO_SHOW
    assert released.completed_at == timers.now()
    assert stored.analytics.no_show_count == 1
    assert sorted(e.position for e in stored.waiting_entries()) == [1, 2]
    assert len(provider.of_type("no_show_final")) == 1
    assert timer_set.state == NotificationState.NO_SHOW
    assert not notifier.has_timers("c-1")
    assert timers.pending_count() == 0
    assert metrics.get_counter_value("queue_no_shows_total", {}) == 1
    assert [e.entry_id for e in received] == [entry.id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_warning_when_disabled(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers)

    notifier.schedule_customer_notifications(queue, entry, config_with(first=0, final=0, warn=False))
    await timers.advance(minutes=60)

    assert len(provider.of_type("table_ready")) == 1
    assert provider.of_type("no_show_warning") == []
    assert entry.status == EntryStatus.CALLED
    assert notifier.get_state("c-1") == NotificationState.IDLE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_zero_grace_period_warns_immediately(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers)

    notifier.schedule_customer_notifications(queue, entry, config_with(first=0, final=0, grace=0, timeout=3))

    await timers.advance(seconds=0)
    assert len(provider.of_type("no_show_warning")) == 1

    await timers.advance(minutes=3)
    assert entry.status == EntryStatus.NO_SHOW


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_failure_does_not_break_chain(notifier, repository, timers, provider):
    provider.error = RuntimeError("relay down")
    queue, entry = call_customer(repository, timers)

    notifier.schedule_customer_notifications(queue, entry, config_with(first=0, final=0))
    await timers.advance(minutes=15)

    assert entry.status == EntryStatus.NO_SHOW
    assert [m["notification_type"] for m in provider.sent] == [
        "table_ready",
        "no_show_warning",
        "no_show_final",
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_schedule_no_show_warning_directly(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers)
    config = config_with(grace=2, timeout=4)

    timer_set = notifier.schedule_no_show_warning(queue, entry, config)
    assert timer_set.state == NotificationState.NOSHOW_WARNING_PENDING

    await timers.advance(minutes=2)
    assert len(provider.of_type("no_show_warning")) == 1

    await timers.advance(minutes=2)
    assert entry.status == EntryStatus.NO_SHOW


# ===== Cancellation safety =====


@pytest.mark.unit
@pytest.mark.asyncio
async def test_completion_before_no_show_cancels_chain(notifier, repository, timers, provider):
    """Completed at +3 min and timers cleared: nothing fires through +20 min."""
    queue, entry = call_customer(repository, timers)
    notifier.schedule_customer_notifications(queue, entry, config_with())

    await timers.advance(minutes=3)
    sent_before = len(provider.sent)

    queue.complete_service(entry.id, now=timers.now())
    repository.save_queue(queue)
    notifier.clear_customer_timers("c-1", queue.id)

    await timers.advance(minutes=17)

    assert len(provider.sent) == sent_before
    assert entry.status == EntryStatus.COMPLETED
    assert queue.analytics.no_show_count == 0
    assert timers.pending_count() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stale_timer_skips_side_effects(notifier, repository, timers, provider):
    """Even without clearing, a fired timer re-reads the entry and backs off."""
    queue, entry = call_customer(repository, timers)
    notifier.schedule_customer_notifications(queue, entry, config_with())

    await timers.advance(minutes=3)
    sent_before = len(provider.sent)

    queue.complete_service(entry.id, now=timers.now())
    repository.save_queue(queue)

    await timers.advance(minutes=20)

    assert len(provider.sent) == sent_before
    assert entry.status == EntryStatus.COMPLETED
    assert queue.analytics.no_show_count == 0
    assert not notifier.has_timers("c-1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_handle_no_show_skips_entry_that_left_called(notifier, repository, timers, provider):
    queue, entry = call_customer(repository, timers)
    queue.complete_service(entry.id, now=timers.now())

    released = await notifier.handle_no_show(queue, entry, config_with())

    assert released is False
    assert entry.status == EntryStatus.COMPLETED
    assert provider.sent == []


@pytest.mark.unit
def test_clear_customer_timers_is_idempotent(notifier, repository, timers):
    queue, entry = call_customer(repository, timers, estimated_wait=10)
    notifier.schedule_customer_notifications(queue, entry, config_with())

    assert notifier.clear_customer_timers("c-1") == 2
    assert notifier.clear_customer_timers("c-1") == 0
    assert notifier.clear_customer_timers("never-called") == 0
    assert notifier.get_state("c-1") == NotificationState.IDLE
    assert timers.pending_count() == 0


@pytest.mark.unit
def test_clear_customer_timers_scoped_to_queue(notifier, repository, timers):
    first_queue, first_entry = call_customer(repository, timers, estimated_wait=10)
    second_queue, second_entry = call_customer(repository, timers, estimated_wait=10)
    config = config_with()

    notifier.schedule_customer_notifications(first_queue, first_entry, config)
    notifier.schedule_customer_notifications(second_queue, second_entry, config)

    notifier.clear_customer_timers("c-1", first_queue.id)

    assert not notifier.has_timers("c-1", first_queue.id)
    assert notifier.has_timers("c-1", second_queue.id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clear_all_timers(notifier, repository, timers, provider, metrics):
    for _ in range(3):
        queue, entry = call_customer(repository, timers, estimated_wait=10)
        notifier.schedule_customer_notifications(queue, entry, config_with())

    assert notifier.clear_all_timers() == 6
    assert notifier.active_timer_sets() == []
    assert metrics.get_counter_value("queue_timers_cancelled_total", {}) == 6

    await timers.advance(minutes=60)
    assert provider.sent == []
