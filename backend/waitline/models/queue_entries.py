"""
Queue entry table - one customer's place in a persisted queue.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from waitline.lib.db import Base
from waitline.models.queue import EntryStatus, Platform


class QueueEntryRecord(Base):
    """
    Queue entry row. ``sequence`` preserves insertion order inside the queue.
    """
    __tablename__ = "queue_entries"
    
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    queue_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("queues.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    
    # Customer
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    platform: Mapped[Platform] = mapped_column(
        SQLEnum(Platform, name="entry_platform"),
        nullable=False,
        default=Platform.WEB,
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    
    # Queue semantics
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EntryStatus] = mapped_column(
        SQLEnum(EntryStatus, name="entry_status"),
        nullable=False,
        default=EntryStatus.WAITING,
        index=True,
    )
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    service_type: Mapped[str] = mapped_column(String(64), nullable=False, default="dine-in")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    special_requests: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estimated_wait_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Minutes, computed at join time",
    )
    
    # Timing
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    called_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    served_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    requeued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_notified: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    
    # Calling artifact
    verification_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    
    queue: Mapped["QueueRecord"] = relationship(back_populates="entries")
    
    def __repr__(self) -> str:
        return f"<QueueEntryRecord(id={self.id}, queue_id={self.queue_id}, status={self.status})>"
