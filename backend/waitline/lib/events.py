"""
Queue event bus.

In-memory publish/subscribe used to expose queue lifecycle hooks to a
real-time layer (dashboards, webchat sockets) without the core knowing about it.
"""
from __future__ import annotations

import enum
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from waitline.lib.logging import get_logger

logger = get_logger(__name__)


ALL_EVENTS = "*"


class QueueEventType(str, enum.Enum):
    """Queue lifecycle events."""
    ENTRY_ADDED = "entry_added"
    ENTRY_CALLED = "entry_called"
    ENTRY_SERVING = "entry_serving"
    ENTRY_COMPLETED = "entry_completed"
    ENTRY_CANCELLED = "entry_cancelled"
    ENTRY_REQUEUED = "entry_requeued"
    ENTRY_NO_SHOW = "entry_no_show"
    ACCEPTING_CHANGED = "accepting_changed"


@dataclass(frozen=True)
class QueueEvent:
    """Something that happened to a queue or one of its entries."""
    
    event_type: QueueEventType
    queue_id: str
    entry_id: Optional[str] = None
    customer_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: uuid4().hex)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus:
    """
    In-memory event bus for queue event publication and subscription.
    
    Handlers may be plain functions or coroutine functions. A failing
    handler is logged and does not prevent the remaining handlers from running.
    
    Attributes:
        _handlers: Dictionary mapping event types to handler lists
    """
    
    def __init__(self) -> None:
        """Initialize event bus with empty handler registry."""
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
    
    def subscribe(self, event_type: QueueEventType | str, handler: Callable) -> None:
        """
        Subscribe a handler to an event type.
        
        Args:
            event_type: QueueEventType (or its value)
            handler: Callable that accepts the event
            
        Example:
            async def on_called(event: QueueEvent):
                await socket.emit("customer-called", event.payload)
            
            event_bus.subscribe(QueueEventType.ENTRY_CALLED, on_called)
        """
        key = _event_key(event_type)
        self._handlers[key].append(handler)
        logger.debug(
            f"Handler subscribed to {key}",
            extra={"extra_fields": {"handler": getattr(handler, "__name__", repr(handler))}},
        )
    
    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe a handler to every event type."""
        self.subscribe(ALL_EVENTS, handler)
    
    def unsubscribe(self, event_type: QueueEventType | str, handler: Callable) -> None:
        """
        Unsubscribe a handler from an event type.
        
        Args:
            event_type: Event type
            handler: Handler to remove
        """
        key = _event_key(event_type)
        if key in self._handlers:
            try:
                self._handlers[key].remove(handler)
            except ValueError:
                pass
    
    async def publish(self, event: QueueEvent) -> None:
        """
        Publish an event to all subscribed handlers.
        
        Args:
            event: Queue event to publish
        """
        key = event.event_type.value
        handlers = list(self._handlers.get(key, [])) + list(self._handlers.get(ALL_EVENTS, []))
        
        if not handlers:
            logger.debug(f"No handlers for event: {key}", extra={"queue_id": event.queue_id})
            return
        
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler failed: {getattr(handler, '__name__', repr(handler))}",
                    extra={
                        "queue_id": event.queue_id,
                        "extra_fields": {"event_type": key, "event_id": event.event_id, "error": str(e)},
                    },
                )
    
    async def publish_many(self, events: list[QueueEvent]) -> None:
        """
        Publish multiple events in order.
        
        Args:
            events: Queue events to publish
        """
        for event in events:
            await self.publish(event)
    
    def clear_handlers(self, event_type: QueueEventType | str | None = None) -> None:
        """Remove handlers for one event type, or all handlers."""
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(_event_key(event_type), None)


def _event_key(event_type: QueueEventType | str) -> str:
    if isinstance(event_type, QueueEventType):
        return event_type.value
    return str(event_type)
