"""
Queue aggregate - one service queue and its ordered entries.

Pure domain object: no database client, no transport. All mutating
operations run under a per-aggregate lock and either apply completely or
raise before touching state.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from threading import RLock
from typing import Iterable, List, Optional
from uuid import uuid4

from waitline.lib.events import QueueEvent, QueueEventType
from waitline.lib.logging import get_logger
from waitline.lib.verification_code import VerificationCodeGenerator, normalize_code
from waitline.models.errors import (
    CapacityExceeded,
    CodeGenerationExhausted,
    EntryNotFound,
    InvalidTransition,
    QueueClosed,
)


logger = get_logger(__name__)


class EntryStatus(str, enum.Enum):
    """Queue entry lifecycle status."""
    WAITING = "waiting"
    CALLED = "called"
    SERVING = "serving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


ACTIVE_STATUSES = frozenset({EntryStatus.WAITING, EntryStatus.CALLED, EntryStatus.SERVING})
FINISHED_STATUSES = frozenset({EntryStatus.COMPLETED, EntryStatus.CANCELLED, EntryStatus.NO_SHOW})


class Platform(str, enum.Enum):
    """Channel the customer joined from."""
    WHATSAPP = "whatsapp"
    MESSENGER = "messenger"
    WEB = "web"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueueEntry:
    """One customer's place in a queue."""

    customer_id: str
    customer_name: str
    customer_phone: str
    position: int
    id: str = field(default_factory=lambda: uuid4().hex)
    platform: Platform = Platform.WEB
    service_type: str = "dine-in"
    party_size: int = 1
    notes: str = ""
    special_requests: str = ""
    session_id: Optional[str] = None
    status: EntryStatus = EntryStatus.WAITING
    estimated_wait_time: int = 0
    joined_at: datetime = field(default_factory=utcnow)
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    requeued_at: Optional[datetime] = None
    last_notified: Optional[datetime] = None
    notification_count: int = 0
    verification_code: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def line_joined_at(self) -> datetime:
        """
        When the entry (re)entered the waiting line; orders FIFO.

        A requeued entry counts as joining at requeued_at, so it goes to the
        back of the line rather than back to its original joined_at slot.
        """
        return self.requeued_at or self.joined_at

    def record_notification(self, at: Optional[datetime] = None) -> None:
        self.notification_count += 1
        self.last_notified = at or utcnow()


@dataclass
class QueueAnalytics:
    """Queue-level counters kept alongside the entries."""

    total_served: int = 0
    no_show_count: int = 0
    last_updated: Optional[datetime] = None


@dataclass
class QueueStats:
    """Point-in-time queue statistics for dashboards."""

    waiting_count: int
    active_count: int
    served_today: int
    no_shows_today: int
    average_wait_time: float


class QueueAggregate:
    """
    Owns the ordered collection of entries for one service queue.

    Positions are assigned as ``next_position`` on insert and only made
    contiguous by an explicit ``recompute_positions()`` call.

    Attributes:
        id: Queue identifier
        merchant_id: Owning merchant
        max_capacity: Maximum number of waiting/called/serving entries
        average_service_time: Minutes per party, used for wait estimates
        accepting_customers: Gate for new joins
        entries: Entries in insertion order
    """

    def __init__(
        self,
        merchant_id: str,
        name: str = "Main queue",
        max_capacity: int = 100,
        average_service_time: int = 15,
        accepting_customers: bool = True,
        id: Optional[str] = None,
        is_active: bool = True,
        current_serving: int = 0,
        entries: Optional[Iterable[QueueEntry]] = None,
        analytics: Optional[QueueAnalytics] = None,
        code_generator: Optional[VerificationCodeGenerator] = None,
    ):
        if max_capacity < 1:
            raise ValueError("max_capacity must be at least 1")
        if average_service_time < 1:
            raise ValueError("average_service_time must be at least 1 minute")

        self.id = id or uuid4().hex
        self.merchant_id = merchant_id
        self.name = name
        self.max_capacity = max_capacity
        self.average_service_time = average_service_time
        self.accepting_customers = accepting_customers
        self.is_active = is_active
        self.current_serving = current_serving
        self.entries: List[QueueEntry] = list(entries or [])
        self.analytics = analytics or QueueAnalytics()
        self.code_generator = code_generator or VerificationCodeGenerator()

        self._lock = RLock()
        self._pending_events: List[QueueEvent] = []

    def __repr__(self) -> str:
        return f"<QueueAggregate(id={self.id}, merchant_id={self.merchant_id}, entries={len(self.entries)})>"

    # ===== Derived values =====

    @property
    def current_length(self) -> int:
        """Number of waiting entries."""
        return sum(1 for entry in self.entries if entry.status == EntryStatus.WAITING)

    @property
    def active_count(self) -> int:
        """Number of waiting, called or serving entries."""
        return sum(1 for entry in self.entries if entry.is_active)

    @property
    def next_position(self) -> int:
        """Highest waiting position plus one (1 for an empty line)."""
        positions = [entry.position for entry in self.entries if entry.status == EntryStatus.WAITING]
        return max(positions) + 1 if positions else 1

    def calculate_estimated_wait_time(self, position: int) -> int:
        """Minutes until a party at ``position`` is expected to be served."""
        return max(0, position - 1) * self.average_service_time

    def waiting_entries(self) -> List[QueueEntry]:
        """Waiting entries in FIFO order (stable on insertion order)."""
        waiting = [entry for entry in self.entries if entry.status == EntryStatus.WAITING]
        return sorted(waiting, key=lambda entry: entry.line_joined_at)

    # ===== Lookups =====

    def get_entry(self, entry_id: str) -> Optional[QueueEntry]:
        """Entry by id, or None."""
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def find_customer(self, customer_id: str) -> Optional[QueueEntry]:
        """Most recently inserted entry for a customer, or None."""
        for entry in reversed(self.entries):
            if entry.customer_id == customer_id:
                return entry
        return None

    def _require_entry(self, entry_id: str, allowed: Iterable[EntryStatus], label: str) -> QueueEntry:
        entry = self.get_entry(entry_id)
        if entry is None or entry.status not in set(allowed):
            raise EntryNotFound(entry_id, self.id, label)
        return entry

    # ===== Joining =====

    def add_customer(
        self,
        customer_id: str,
        customer_name: str,
        customer_phone: str,
        party_size: int = 1,
        notes: str = "",
        platform: Platform = Platform.WEB,
        service_type: str = "dine-in",
        special_requests: str = "",
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QueueEntry:
        """
        Append a waiting entry at the end of the line.

        Raises:
            QueueClosed: If the queue is not accepting customers
            CapacityExceeded: If active entries already fill the queue
        """
        if party_size < 1:
            raise InvalidTransition("party_size must be at least 1", self.id)

        with self._lock:
            if not self.accepting_customers:
                raise QueueClosed(self.id)
            if self.active_count >= self.max_capacity:
                raise CapacityExceeded(self.id, self.max_capacity)

            position = self.next_position
            entry = QueueEntry(
                customer_id=customer_id,
                customer_name=customer_name,
                customer_phone=customer_phone,
                position=position,
                platform=Platform(platform),
                service_type=service_type,
                party_size=party_size,
                notes=notes,
                special_requests=special_requests,
                session_id=session_id,
                estimated_wait_time=self.calculate_estimated_wait_time(position),
                joined_at=now or utcnow(),
            )
            self.entries.append(entry)
            self._record(QueueEventType.ENTRY_ADDED, entry, position=position)

        logger.info(
            f"Customer joined at position {position}",
            extra={"queue_id": self.id, "entry_id": entry.id, "customer_id": customer_id},
        )
        return entry

    # ===== Calling =====

    def issued_codes(self, day: date) -> set:
        """Codes handed out on ``day`` (by called_at date) plus any still held by a called entry."""
        return {
            normalize_code(entry.verification_code)
            for entry in self.entries
            if entry.verification_code
            and (
                entry.status == EntryStatus.CALLED
                or (entry.called_at and entry.called_at.date() == day)
            )
        }

    def _call(self, entry: QueueEntry, now: datetime, event_extra: dict) -> QueueEntry:
        try:
            code = self.code_generator.generate(self.issued_codes(now.date()))
        except CodeGenerationExhausted as e:
            e.queue_id = self.id
            logger.error(
                "Verification code space exhausted for today",
                extra={"queue_id": self.id, "entry_id": entry.id},
            )
            raise

        entry.status = EntryStatus.CALLED
        entry.called_at = now
        entry.verification_code = code
        self.current_serving = entry.position
        self._record(QueueEventType.ENTRY_CALLED, entry, position=entry.position, **event_extra)

        logger.info(
            f"Called customer at position {entry.position}",
            extra={"queue_id": self.id, "entry_id": entry.id, "customer_id": entry.customer_id},
        )
        return entry

    def call_next(self, now: Optional[datetime] = None) -> Optional[QueueEntry]:
        """
        Call the earliest waiting entry.

        Returns:
            The called entry, or None when nobody is waiting

        Raises:
            CodeGenerationExhausted: If no unique code could be issued
        """
        with self._lock:
            waiting = self.waiting_entries()
            if not waiting:
                return None
            return self._call(waiting[0], now or utcnow(), {"out_of_order": False})

    def call_specific(self, entry_id: str, now: Optional[datetime] = None) -> QueueEntry:
        """
        Call a waiting entry ahead of FIFO order.

        Raises:
            EntryNotFound: If the entry does not exist or is not waiting
            CodeGenerationExhausted: If no unique code could be issued
        """
        with self._lock:
            entry = self._require_entry(entry_id, [EntryStatus.WAITING], EntryStatus.WAITING.value)
            return self._call(entry, now or utcnow(), {"out_of_order": True})

    def verify_code(self, code: str) -> QueueEntry:
        """
        Find the called entry holding ``code`` (case-insensitive).

        Raises:
            EntryNotFound: If no called entry holds the code
        """
        wanted = normalize_code(code)
        with self._lock:
            for entry in self.entries:
                if (
                    entry.status == EntryStatus.CALLED
                    and entry.verification_code
                    and normalize_code(entry.verification_code) == wanted
                ):
                    return entry
        raise EntryNotFound(wanted, self.id, EntryStatus.CALLED.value)

    # ===== Serving and leaving =====

    def mark_serving(self, entry_id: str, now: Optional[datetime] = None) -> QueueEntry:
        """Seat a called customer."""
        with self._lock:
            entry = self._require_entry(entry_id, [EntryStatus.CALLED], EntryStatus.CALLED.value)
            entry.status = EntryStatus.SERVING
            entry.served_at = now or utcnow()
            self._record(QueueEventType.ENTRY_SERVING, entry)
        return entry

    def complete_service(
        self,
        entry_id: str,
        resulting_status: EntryStatus = EntryStatus.COMPLETED,
        now: Optional[datetime] = None,
    ) -> QueueEntry:
        """
        Finish a called or serving entry.

        Args:
            entry_id: Entry to finish
            resulting_status: completed, cancelled or no-show

        Raises:
            InvalidTransition: If resulting_status is not a finished status
            EntryNotFound: If the entry is absent or not called/serving
        """
        resulting_status = EntryStatus(resulting_status)
        if resulting_status not in FINISHED_STATUSES:
            raise InvalidTransition(f"Cannot complete service as '{resulting_status.value}'", self.id)

        with self._lock:
            entry = self._require_entry(
                entry_id, [EntryStatus.CALLED, EntryStatus.SERVING], "called|serving"
            )
            self._finish(entry, resulting_status, now or utcnow())
        return entry

    def remove_customer(
        self,
        entry_id: str,
        reason: EntryStatus = EntryStatus.CANCELLED,
        now: Optional[datetime] = None,
    ) -> QueueEntry:
        """
        Take any active entry out of the line (customer left, staff removed).

        The entry is kept for daily statistics.
        """
        reason = EntryStatus(reason)
        if reason not in FINISHED_STATUSES:
            raise InvalidTransition(f"Cannot remove customer as '{reason.value}'", self.id)

        with self._lock:
            entry = self._require_entry(entry_id, ACTIVE_STATUSES, "active")
            self._finish(entry, reason, now or utcnow())
        return entry

    def mark_no_show(self, entry_id: str, now: Optional[datetime] = None) -> QueueEntry:
        """Release a called entry whose customer never arrived."""
        with self._lock:
            entry = self._require_entry(entry_id, [EntryStatus.CALLED], EntryStatus.CALLED.value)
            self._finish(entry, EntryStatus.NO_SHOW, now or utcnow())
        return entry

    def _finish(self, entry: QueueEntry, status: EntryStatus, now: datetime) -> None:
        entry.status = status
        entry.completed_at = now

        if status == EntryStatus.COMPLETED:
            self.analytics.total_served += 1
            event_type = QueueEventType.ENTRY_COMPLETED
        elif status == EntryStatus.NO_SHOW:
            self.analytics.no_show_count += 1
            event_type = QueueEventType.ENTRY_NO_SHOW
        else:
            event_type = QueueEventType.ENTRY_CANCELLED
        self.analytics.last_updated = now

        self._record(event_type, entry, status=status.value)
        logger.info(
            f"Entry finished as {status.value}",
            extra={"queue_id": self.id, "entry_id": entry.id, "customer_id": entry.customer_id},
        )

    # ===== Requeue =====

    def requeue(self, entry_id: str, now: Optional[datetime] = None) -> QueueEntry:
        """
        Put a completed entry back at the end of the waiting line.

        Raises:
            EntryNotFound: If the entry is absent or not completed
            CapacityExceeded: If active entries already fill the queue
        """
        with self._lock:
            entry = self._require_entry(entry_id, [EntryStatus.COMPLETED], EntryStatus.COMPLETED.value)
            if self.active_count >= self.max_capacity:
                raise CapacityExceeded(self.id, self.max_capacity)

            entry.position = self.next_position
            entry.status = EntryStatus.WAITING
            entry.requeued_at = now or utcnow()
            entry.completed_at = None
            entry.called_at = None
            entry.served_at = None
            entry.verification_code = None

            self.recompute_positions()
            self._record(QueueEventType.ENTRY_REQUEUED, entry, position=entry.position)

        logger.info(
            f"Entry requeued at position {entry.position}",
            extra={"queue_id": self.id, "entry_id": entry.id, "customer_id": entry.customer_id},
        )
        return entry

    # ===== Positions =====

    def recompute_positions(self) -> None:
        """
        Renumber waiting entries 1..N in FIFO order.

        Stable: equal join times keep insertion order, so repeated calls
        without intervening mutations change nothing. Wait estimates are
        left as computed at join time.
        """
        with self._lock:
            for index, entry in enumerate(self.waiting_entries()):
                entry.position = index + 1

    # ===== Accepting gate =====

    def toggle_accepting(self) -> bool:
        """Flip the accepting flag; returns the new value."""
        with self._lock:
            return self._set_accepting(not self.accepting_customers)

    def stop_accepting(self) -> bool:
        with self._lock:
            return self._set_accepting(False)

    def start_accepting(self) -> bool:
        with self._lock:
            return self._set_accepting(True)

    def _set_accepting(self, accepting: bool) -> bool:
        if self.accepting_customers != accepting:
            self.accepting_customers = accepting
            self._pending_events.append(QueueEvent(
                event_type=QueueEventType.ACCEPTING_CHANGED,
                queue_id=self.id,
                payload={"accepting_customers": accepting},
            ))
            logger.info(
                f"Queue accepting customers: {accepting}",
                extra={"queue_id": self.id},
            )
        return self.accepting_customers

    # ===== Statistics =====

    def get_stats(self, now: Optional[datetime] = None) -> QueueStats:
        """Counts for today plus the average join-to-completion minutes."""
        today = (now or utcnow()).date()
        with self._lock:
            finished_today = [
                entry for entry in self.entries
                if entry.completed_at is not None and entry.completed_at.date() == today
            ]
            completed_today = [e for e in finished_today if e.status == EntryStatus.COMPLETED]
            waits = [
                (e.completed_at - e.line_joined_at).total_seconds() / 60
                for e in completed_today
            ]
            return QueueStats(
                waiting_count=self.current_length,
                active_count=self.active_count,
                served_today=len(completed_today),
                no_shows_today=sum(1 for e in finished_today if e.status == EntryStatus.NO_SHOW),
                average_wait_time=round(sum(waits) / len(waits), 1) if waits else 0.0,
            )

    # ===== Events =====

    def _record(self, event_type: QueueEventType, entry: QueueEntry, **payload) -> None:
        self._pending_events.append(QueueEvent(
            event_type=event_type,
            queue_id=self.id,
            entry_id=entry.id,
            customer_id=entry.customer_id,
            payload=payload,
        ))

    def pull_events(self) -> List[QueueEvent]:
        """Return and forget the events recorded since the last pull."""
        with self._lock:
            events, self._pending_events = self._pending_events, []
        return events
