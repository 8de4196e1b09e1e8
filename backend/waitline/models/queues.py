"""
Queue table - persisted queue header and analytics counters.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from waitline.lib.db import Base


class QueueRecord(Base):
    """
    Queue row. Entries live in queue_entries, ordered by their sequence column.
    """
    __tablename__ = "queues"
    
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    
    # Capacity and pacing
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    average_service_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=15,
        comment="Minutes per party used for wait estimates",
    )
    
    # Flags
    accepting_customers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_serving: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    
    # Analytics
    total_served: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_show_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analytics_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    
    entries: Mapped[List["QueueEntryRecord"]] = relationship(
        back_populates="queue",
        cascade="all, delete-orphan",
        order_by="QueueEntryRecord.sequence",
    )
    
    def __repr__(self) -> str:
        return f"<QueueRecord(id={self.id}, merchant_id={self.merchant_id}, name={self.name})>"
