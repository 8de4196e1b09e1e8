"""
Queue persistence boundary.

The queue engine calls load_queue() before and save_queue() after every
mutating operation; it never talks to a database client directly.

Stores:
    InMemoryQueueRepository - process-local, returns the live aggregate
    SqlQueueRepository - SQLAlchemy tables ``queues`` / ``queue_entries``
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from waitline.lib.logging import get_logger
from waitline.lib.settings import settings
from waitline.lib.verification_code import VerificationCodeGenerator
from waitline.models.errors import QueueNotFound
from waitline.models.queue import (
    EntryStatus,
    Platform,
    QueueAggregate,
    QueueAnalytics,
    QueueEntry,
)
from waitline.models.queue_entries import QueueEntryRecord
from waitline.models.queues import QueueRecord


logger = get_logger(__name__)


class QueueRepository(ABC):
    """
    Abstract queue store.
    """

    @abstractmethod
    def load_queue(self, queue_id: str) -> QueueAggregate:
        """
        Load a queue aggregate.

        Raises:
            QueueNotFound: If the queue id is unknown
        """
        pass

    @abstractmethod
    def save_queue(self, queue: QueueAggregate) -> None:
        """Persist the full state of a queue aggregate (insert or update)."""
        pass

    @abstractmethod
    def list_queues(self, merchant_id: Optional[str] = None) -> List[QueueAggregate]:
        """All queues, optionally restricted to one merchant."""
        pass


class InMemoryQueueRepository(QueueRepository):
    """
    Dictionary-backed store.

    load_queue() returns the same aggregate object every time, so its
    per-aggregate lock serializes concurrent mutations.
    """

    def __init__(self):
        self._lock = Lock()
        self._queues: Dict[str, QueueAggregate] = {}

    def load_queue(self, queue_id: str) -> QueueAggregate:
        with self._lock:
            queue = self._queues.get(queue_id)
        if queue is None:
            raise QueueNotFound(queue_id)
        return queue

    def save_queue(self, queue: QueueAggregate) -> None:
        with self._lock:
            self._queues[queue.id] = queue

    def list_queues(self, merchant_id: Optional[str] = None) -> List[QueueAggregate]:
        with self._lock:
            queues = list(self._queues.values())
        if merchant_id is not None:
            queues = [queue for queue in queues if queue.merchant_id == merchant_id]
        return queues


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SqlQueueRepository(QueueRepository):
    """
    SQLAlchemy-backed store.

    Each call opens its own session from the factory and commits before
    returning, so aggregates handed out are detached snapshots.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        code_generator: Optional[VerificationCodeGenerator] = None,
    ):
        self.session_factory = session_factory
        self.code_generator = code_generator or VerificationCodeGenerator(
            max_attempts=settings.verification_code_max_attempts
        )

    def load_queue(self, queue_id: str) -> QueueAggregate:
        with self.session_factory() as session:
            record = session.execute(
                select(QueueRecord)
                .options(selectinload(QueueRecord.entries))
                .where(QueueRecord.id == queue_id)
            ).scalar_one_or_none()

            if record is None:
                raise QueueNotFound(queue_id)
            return self._to_domain(record)

    def save_queue(self, queue: QueueAggregate) -> None:
        with self.session_factory() as session:
            try:
                record = session.get(QueueRecord, queue.id, options=[selectinload(QueueRecord.entries)])
                if record is None:
                    record = QueueRecord(id=queue.id)
                    session.add(record)

                self._apply(record, queue)
                session.commit()
            except Exception:
                session.rollback()
                logger.error("Failed to save queue", extra={"queue_id": queue.id}, exc_info=True)
                raise

        logger.debug(f"Saved queue with {len(queue.entries)} entries", extra={"queue_id": queue.id})

    def list_queues(self, merchant_id: Optional[str] = None) -> List[QueueAggregate]:
        with self.session_factory() as session:
            stmt = select(QueueRecord).options(selectinload(QueueRecord.entries)).order_by(QueueRecord.created_at)
            if merchant_id is not None:
                stmt = stmt.where(QueueRecord.merchant_id == merchant_id)
            return [self._to_domain(record) for record in session.execute(stmt).scalars()]

    # ===== Mapping =====

    @staticmethod
    def _apply(record: QueueRecord, queue: QueueAggregate) -> None:
        record.merchant_id = queue.merchant_id
        record.name = queue.name
        record.max_capacity = queue.max_capacity
        record.average_service_time = queue.average_service_time
        record.accepting_customers = queue.accepting_customers
        record.is_active = queue.is_active
        record.current_serving = queue.current_serving
        record.total_served = queue.analytics.total_served
        record.no_show_count = queue.analytics.no_show_count
        record.analytics_updated_at = queue.analytics.last_updated

        existing = {entry_record.id: entry_record for entry_record in record.entries}
        keep = set()

        for sequence, entry in enumerate(queue.entries):
            entry_record = existing.get(entry.id)
            if entry_record is None:
                entry_record = QueueEntryRecord(id=entry.id)
                record.entries.append(entry_record)
            keep.add(entry.id)

            entry_record.sequence = sequence
            entry_record.customer_id = entry.customer_id
            entry_record.customer_name = entry.customer_name
            entry_record.customer_phone = entry.customer_phone
            entry_record.platform = entry.platform
            entry_record.session_id = entry.session_id
            entry_record.position = entry.position
            entry_record.status = entry.status
            entry_record.party_size = entry.party_size
            entry_record.service_type = entry.service_type
            entry_record.notes = entry.notes
            entry_record.special_requests = entry.special_requests
            entry_record.estimated_wait_time = entry.estimated_wait_time
            entry_record.joined_at = entry.joined_at
            entry_record.called_at = entry.called_at
            entry_record.served_at = entry.served_at
            entry_record.completed_at = entry.completed_at
            entry_record.requeued_at = entry.requeued_at
            entry_record.last_notified = entry.last_notified
            entry_record.notification_count = entry.notification_count
            entry_record.verification_code = entry.verification_code

        for entry_id, entry_record in existing.items():
            if entry_id not in keep:
                record.entries.remove(entry_record)

    def _to_domain(self, record: QueueRecord) -> QueueAggregate:
        entries = [
            QueueEntry(
                id=entry_record.id,
                customer_id=entry_record.customer_id,
                customer_name=entry_record.customer_name,
                customer_phone=entry_record.customer_phone,
                position=entry_record.position,
                platform=Platform(entry_record.platform),
                service_type=entry_record.service_type,
                party_size=entry_record.party_size,
                notes=entry_record.notes,
                special_requests=entry_record.special_requests,
                session_id=entry_record.session_id,
                status=EntryStatus(entry_record.status),
                estimated_wait_time=entry_record.estimated_wait_time,
                joined_at=_as_utc(entry_record.joined_at),
                called_at=_as_utc(entry_record.called_at),
                served_at=_as_utc(entry_record.served_at),
                completed_at=_as_utc(entry_record.completed_at),
                requeued_at=_as_utc(entry_record.requeued_at),
                last_notified=_as_utc(entry_record.last_notified),
                notification_count=entry_record.notification_count,
                verification_code=entry_record.verification_code,
            )
            for entry_record in sorted(record.entries, key=lambda r: r.sequence)
        ]

        return QueueAggregate(
            id=record.id,
            merchant_id=record.merchant_id,
            name=record.name,
            max_capacity=record.max_capacity,
            average_service_time=record.average_service_time,
            accepting_customers=record.accepting_customers,
            is_active=record.is_active,
            current_serving=record.current_serving,
            entries=entries,
            code_generator=self.code_generator,
            analytics=QueueAnalytics(
                total_served=record.total_served,
                no_show_count=record.no_show_count,
                last_updated=_as_utc(record.analytics_updated_at),
            ),
        )
