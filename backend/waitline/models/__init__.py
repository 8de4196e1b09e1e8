"""
Queue models package.

Domain aggregate plus the SQLAlchemy tables used by the SQL queue store.
Import all tables here to ensure they're registered with Base.metadata.
"""
from waitline.models.queue import (
    EntryStatus,
    Platform,
    QueueEntry,
    QueueAnalytics,
    QueueStats,
    QueueAggregate,
)
from waitline.models.queues import QueueRecord
from waitline.models.queue_entries import QueueEntryRecord

__all__ = [
    "EntryStatus",
    "Platform",
    "QueueEntry",
    "QueueAnalytics",
    "QueueStats",
    "QueueAggregate",
    "QueueRecord",
    "QueueEntryRecord",
]
